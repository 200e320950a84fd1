# levelbot/cogs/leveling.py
from __future__ import annotations

import logging
from typing import List, Optional, Set

import discord
from discord.ext import commands

from levelbot.context import LevelingContext
from levelbot.errors import InvalidPolicyValue, PlatformError, RoleGrantFailed, StorageUnavailable
from levelbot.services.accrual import ChatMessage
from levelbot.services.levels import progress, progress_bar, xp_for_level
from levelbot.services.policy import ANNOUNCE_MODES
from levelbot.services.progression import utcnow
from levelbot.services.rewards import ReconcileResult
from levelbot.utils import embeds
from levelbot.utils.durations import humanize, parse_duration

logger = logging.getLogger(__name__)

BOOST_MAX_HOURS = 168
EXAMPLE_LEVELS = (5, 10, 25, 50, 100)
MEDALS = {1: "🥇", 2: "🥈", 3: "🥉"}

ANNOUNCE_DESCRIPTIONS = {
    "current": "Level-up messages are sent in the channel where XP is earned.",
    "dm": "Level-up messages are sent as direct messages.",
    "channel": "Level-up messages are sent in {channel}.",
    "disabled": "Level-up messages are disabled.",
}


# =============== Discord side of the leveling services ===============

class DiscordPlatform:
    """Platform implementation over a live discord.py client."""

    def __init__(self, bot: commands.Bot):
        self.bot = bot

    def _guild(self, guild_id: str) -> discord.Guild:
        guild = self.bot.get_guild(int(guild_id))
        if guild is None:
            raise PlatformError(f"guild {guild_id} is not available")
        return guild

    async def _member(self, guild: discord.Guild, user_id: str) -> discord.Member:
        member = guild.get_member(int(user_id))
        if member is not None:
            return member
        try:
            return await guild.fetch_member(int(user_id))
        except discord.HTTPException as e:
            raise PlatformError(f"member {user_id} not found in {guild.id}: {e}") from e

    async def deliver_message(self, channel_id: str, content: str) -> None:
        channel = self.bot.get_channel(int(channel_id))
        try:
            if channel is None:
                channel = await self.bot.fetch_channel(int(channel_id))
            if not isinstance(channel, discord.abc.Messageable):
                raise PlatformError(f"channel {channel_id} cannot receive messages")
            await channel.send(embed=embeds.level_up(content))
        except discord.HTTPException as e:
            raise PlatformError(f"cannot post in {channel_id}: {e}") from e

    async def direct_message(self, user_id: str, content: str) -> None:
        try:
            user = self.bot.get_user(int(user_id)) or await self.bot.fetch_user(int(user_id))
            await user.send(embed=embeds.level_up(content, user.display_avatar.url))
        except discord.HTTPException as e:
            raise PlatformError(f"cannot DM {user_id}: {e}") from e

    async def fetch_role(self, guild_id: str, role_id: str) -> Optional[str]:
        role = self._guild(guild_id).get_role(int(role_id))
        return role.name if role else None

    async def member_role_ids(self, guild_id: str, user_id: str) -> Set[str]:
        member = await self._member(self._guild(guild_id), user_id)
        return {str(r.id) for r in member.roles}

    async def grant_role(self, guild_id: str, user_id: str, role_id: str) -> None:
        guild = self._guild(guild_id)
        role = guild.get_role(int(role_id))
        if role is None:
            raise RoleGrantFailed(guild_id, user_id, role_id, "role no longer exists")
        if role >= guild.me.top_role:
            raise RoleGrantFailed(guild_id, user_id, role_id, "role is above my highest role")
        member = await self._member(guild, user_id)
        try:
            await member.add_roles(role, reason="level reward")
        except discord.HTTPException as e:
            raise RoleGrantFailed(guild_id, user_id, role_id, str(e)) from e


def _failed_roles_note(result: Optional[ReconcileResult]) -> Optional[str]:
    if not result or not result.failed:
        return None
    mentions = ", ".join(f"<@&{f.role_id}>" for f in result.failed)
    return f"Couldn't give {mentions}. Check that my role is above them and I can manage roles."


# =============== The Cog ===============

class Leveling(commands.Cog, name="Leveling"):
    """
    Chat XP, levels and level reward roles.
    - XP is global per user; settings and reward roles are per server.
    - One XP grant per user every few minutes, sized by message length.
    """

    def __init__(self, bot: commands.Bot, ctx: LevelingContext):
        self.bot = bot
        self.leveling = ctx

    async def cog_load(self):
        try:
            await self.leveling.policies.load()
        except StorageUnavailable:
            logger.exception("could not load leveling settings; starting with defaults")

    async def _save_policy(self, ctx: commands.Context) -> None:
        try:
            await self.leveling.policies.save(ctx.guild.id)
        except StorageUnavailable:
            logger.exception("could not save leveling settings for guild %s", ctx.guild.id)
            await ctx.send(embed=embeds.warning(
                "Not saved", "The change is active but will be lost when the bot restarts."
            ))

    async def cog_command_error(self, ctx: commands.Context, error: commands.CommandError):
        err = getattr(error, "original", error)
        if isinstance(err, InvalidPolicyValue):
            return await ctx.send(embed=embeds.warning("Invalid value", str(err)))
        if isinstance(err, StorageUnavailable):
            logger.error("leveling command %s failed: %s", ctx.command, err)
            return await ctx.send(embed=embeds.error("Unavailable", "Leveling data is unavailable right now, try again later."))
        if isinstance(err, commands.MissingPermissions):
            return await ctx.send(embed=embeds.error("Missing permissions", ", ".join(err.missing_permissions)))
        if isinstance(err, commands.NoPrivateMessage):
            return await ctx.send(embed=embeds.error("Server only", "This command can only be used in a server."))
        if isinstance(err, (commands.BadArgument, commands.MissingRequiredArgument)):
            usage = f"{ctx.clean_prefix}{ctx.command.qualified_name} {ctx.command.signature}"
            return await ctx.send(embed=embeds.error("Bad arguments", f"`{usage}`\n{err}"))
        logger.exception("unhandled error in %s", ctx.command, exc_info=err)
        await ctx.send(embed=embeds.error("Error", "Something went wrong."))

    # -------------------- listener --------------------

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message):
        if not message.guild or message.author.bot:
            return
        await self.leveling.gate.handle(ChatMessage(
            guild_id=str(message.guild.id),
            user_id=str(message.author.id),
            channel_id=str(message.channel.id),
            length=len(message.content or ""),
            timestamp=message.created_at,
        ))

    # -------------------- public commands --------------------

    @commands.command(name="rank", usage="[@user]")
    @commands.guild_only()
    async def rank(self, ctx: commands.Context, member: Optional[discord.Member] = None):
        m = member or ctx.author
        record = await self.leveling.progression.get_or_create(m.id)
        position = await self.leveling.progression.get_rank(m.id)
        p = progress(record.experience)
        e = embeds.info(f"📊 {m.display_name}'s Level Profile")
        e.set_thumbnail(url=m.display_avatar.url)
        e.add_field(name="🏆 Level", value=f"**{record.level}**", inline=True)
        e.add_field(name="✨ XP", value=f"**{record.experience}**", inline=True)
        e.add_field(name="📈 Rank", value=f"**#{position}**", inline=True)
        e.add_field(
            name=f"Progress to level {record.level + 1}",
            value=f"`{progress_bar(p.percent, 10)}` **{p.percent}%** ({p.into_level}/{p.span} XP)",
            inline=False,
        )
        await ctx.send(embed=e)

    @commands.command(name="toplevel", aliases=["top"], usage="[limit]")
    @commands.guild_only()
    async def toplevel(self, ctx: commands.Context, limit: int = 10):
        limit = max(1, min(25, int(limit)))
        top = await self.leveling.progression.get_leaderboard(limit)
        if not top:
            return await ctx.send(embed=embeds.info("🏆 Level Leaderboard", "No users have gained any XP yet."))
        lines: List[str] = []
        for i, rec in enumerate(top, 1):
            member = ctx.guild.get_member(int(rec.user_id))
            name = member.mention if member else f"<@{rec.user_id}>"
            lines.append(f"{MEDALS.get(i, f'#{i}')} **{name}** — Level {rec.level} ({rec.experience} XP)")
        e = embeds.info("🏆 Level Leaderboard", "\n".join(lines))
        e.set_footer(text=f"Top {limit} highest-level users")
        if all(rec.user_id != str(ctx.author.id) for rec in top):
            me = await self.leveling.progression.get_or_create(ctx.author.id)
            position = await self.leveling.progression.get_rank(ctx.author.id)
            e.add_field(
                name="Your Position",
                value=f"You are ranked #{position} at Level {me.level} with {me.experience} XP",
            )
        await ctx.send(embed=e)

    @commands.command(name="levelup", usage="[level]")
    @commands.guild_only()
    async def levelup(self, ctx: commands.Context, level: Optional[int] = None):
        roles = self.leveling.policies.list_level_roles(ctx.guild.id)
        if level is not None:
            if not 2 <= level <= 100:
                return await ctx.send(embed=embeds.error("Bad level", "Pick a level between 2 and 100."))
            total = xp_for_level(level)
            e = embeds.info(f"📊 Level {level} Information")
            e.add_field(name="Total XP Required", value=f"{total} XP", inline=True)
            e.add_field(name="XP from Previous Level", value=f"{total - xp_for_level(level - 1)} XP", inline=True)
            reward = next((lr for lr in roles if lr.level == level), None)
            if reward and ctx.guild.get_role(int(reward.role_id)):
                e.add_field(name="Role Reward", value=f"<@&{reward.role_id}>", inline=False)
            return await ctx.send(embed=e)

        record = await self.leveling.progression.get_or_create(ctx.author.id)
        position = await self.leveling.progression.get_rank(ctx.author.id)
        p = progress(record.experience)
        e = embeds.info(f"🎮 {ctx.author.display_name}'s Level Progress")
        e.set_thumbnail(url=ctx.author.display_avatar.url)
        e.add_field(name="Current Level", value=str(record.level), inline=True)
        e.add_field(name="Total XP", value=str(record.experience), inline=True)
        e.add_field(name="Rank", value=f"#{position}", inline=True)
        e.add_field(
            name=f"Progress to Level {record.level + 1}",
            value=f"`{progress_bar(p.percent)}` {p.percent}%",
            inline=False,
        )
        e.add_field(name="XP Progress", value=f"{p.into_level}/{p.span} XP ({p.remaining} to go)", inline=True)
        upcoming = [lr for lr in roles if lr.level > record.level][:3]
        if upcoming:
            e.add_field(
                name="Upcoming Role Rewards",
                value="\n".join(f"**Level {lr.level}**: <@&{lr.role_id}>" for lr in upcoming),
                inline=False,
            )
        e.set_footer(text="You earn XP by chatting in the server.")
        await ctx.send(embed=e)

    @commands.command(name="levelinfo")
    @commands.guild_only()
    async def levelinfo(self, ctx: commands.Context):
        policy = self.leveling.policies.get_policy(ctx.guild.id)
        reqs = "\n".join(f"**Level {lvl}**: {xp_for_level(lvl)} XP" for lvl in EXAMPLE_LEVELS)
        channel = f"<#{policy.announce_channel_id}>" if policy.announce_channel_id else "a specific channel"
        e = embeds.info(
            "📚 Leveling System",
            "Chat to earn XP. Longer messages earn more, once every few minutes.",
        )
        e.add_field(name="Level Requirements", value=reqs, inline=False)
        e.add_field(
            name="Server Settings",
            value=(
                f"• Leveling: **{'Enabled' if policy.enabled else 'Disabled'}**\n"
                f"• XP Rate: **{policy.xp_multiplier:g}x**\n"
                f"• Announcements: {ANNOUNCE_DESCRIPTIONS[policy.announce_mode].format(channel=channel)}\n"
                f"• Level Roles: **{len(policy.level_roles)}** configured"
            ),
            inline=False,
        )
        await ctx.send(embed=e)

    # -------------------- admin: XP --------------------

    @commands.command(name="xp", usage="<@user> <amount>")
    @commands.guild_only()
    @commands.has_permissions(administrator=True)
    async def xp(self, ctx: commands.Context, member: discord.Member, amount: int):
        before = await self.leveling.progression.get_or_create(member.id)
        change, roles = await self.leveling.adjust_experience(ctx.guild.id, member.id, amount)
        after = change.record

        if amount > 0:
            desc = f"Added **{amount}** XP to {member.mention}."
        elif amount < 0:
            desc = f"Removed **{abs(amount)}** XP from {member.mention}."
        else:
            desc = f"No XP change for {member.mention}."
        if after.level > before.level:
            desc += f"\nThey leveled up from **Level {before.level}** to **Level {after.level}**!"
        elif after.level < before.level:
            desc += f"\nTheir level dropped from **Level {before.level}** to **Level {after.level}**."

        e = embeds.success("XP updated", desc)
        e.add_field(name="Previous", value=f"Level: {before.level}\nXP: {before.experience}", inline=True)
        e.add_field(name="Current", value=f"Level: {after.level}\nXP: {after.experience}", inline=True)
        await ctx.send(embed=e)

        if roles is not None:
            note = _failed_roles_note(roles)
            if note:
                await ctx.send(embed=embeds.warning("Role rewards", note))

    @commands.command(name="resetxp", usage="<@user> <confirm>")
    @commands.guild_only()
    @commands.has_permissions(manage_roles=True)
    async def resetxp(self, ctx: commands.Context, member: discord.Member, confirm: bool = False):
        if not confirm:
            return await ctx.send(embed=embeds.info(
                "XP reset cancelled",
                f"Nothing changed. Run `{ctx.clean_prefix}resetxp @user yes` to confirm; this cannot be undone.",
            ))
        before = await self.leveling.progression.get_or_create(member.id)
        after = await self.leveling.progression.reset_progression(member.id)
        e = embeds.success("🧹 XP Reset", f"{member.mention}'s XP and level have been reset.")
        e.add_field(name="Previous Level", value=str(before.level), inline=True)
        e.add_field(name="Previous XP", value=str(before.experience), inline=True)
        e.add_field(name="New Level", value=str(after.level), inline=True)
        e.add_field(name="New XP", value=str(after.experience), inline=True)
        await ctx.send(embed=e)
        logger.info("%s reset XP of %s in guild %s", ctx.author.id, member.id, ctx.guild.id)
        try:
            await member.send(embed=embeds.warning(
                "Your XP Has Been Reset",
                f"Your XP and level were reset by a moderator in **{ctx.guild.name}**.",
            ))
        except discord.HTTPException:
            pass  # DMs closed

    @commands.command(name="xpboost", usage="<@user> <multiplier> <duration>")
    @commands.guild_only()
    @commands.has_permissions(manage_roles=True)
    async def xpboost(self, ctx: commands.Context, member: discord.Member, multiplier: float, duration: str):
        try:
            length = parse_duration(duration)
        except ValueError:
            return await ctx.send(embed=embeds.error("Bad duration", "Examples: `12` (hours), `90m`, `2d`"))
        if length.total_seconds() < 3600 or length.total_seconds() > BOOST_MAX_HOURS * 3600:
            return await ctx.send(embed=embeds.error("Bad duration", f"Boosts last between 1 and {BOOST_MAX_HOURS} hours."))

        # set_boost rejects multipliers outside BOOST_MIN..BOOST_MAX
        expires = utcnow() + length
        applied = await self.leveling.progression.set_boost(member.id, multiplier, expires)
        ts = int(expires.timestamp())
        e = embeds.success("🚀 XP Boost Applied", f"{member.mention} now earns **{applied:g}x** XP.")
        e.add_field(name="Duration", value=humanize(length), inline=True)
        e.add_field(name="Expires", value=f"<t:{ts}:R>", inline=True)
        await ctx.send(embed=e)
        try:
            await member.send(embed=embeds.success(
                "🚀 You Got an XP Boost!",
                f"You earn **{applied:g}x** XP in every server until <t:{ts}:f>.",
            ))
        except discord.HTTPException:
            pass

    # -------------------- admin: settings --------------------

    @commands.group(name="levelset", invoke_without_command=True)
    @commands.guild_only()
    @commands.has_permissions(manage_guild=True)
    async def levelset(self, ctx: commands.Context):
        p = ctx.clean_prefix
        await ctx.send(
            f"use: `{p}levelset enable <on/off>` / `{p}levelset xprate <0.5-3.0>` / "
            f"`{p}levelset announcements <{'|'.join(ANNOUNCE_MODES)}> [#channel]`"
        )

    @levelset.command(name="enable")
    @commands.has_permissions(manage_guild=True)
    async def levelset_enable(self, ctx: commands.Context, status: bool):
        self.leveling.policies.set_policy_field(ctx.guild.id, "enabled", status)
        await self._save_policy(ctx)
        await ctx.send(embed=embeds.success(
            "Leveling updated", f"Leveling has been **{'enabled' if status else 'disabled'}** for this server."
        ))

    @levelset.command(name="xprate")
    @commands.has_permissions(manage_guild=True)
    async def levelset_xprate(self, ctx: commands.Context, multiplier: float):
        self.leveling.policies.set_policy_field(ctx.guild.id, "xp_multiplier", multiplier)
        await self._save_policy(ctx)
        await ctx.send(embed=embeds.success("Leveling updated", f"XP rate set to **{multiplier:g}x**."))

    @levelset.command(name="announcements", usage="<current|dm|channel|disabled> [#channel]")
    @commands.has_permissions(manage_guild=True)
    async def levelset_announcements(
        self, ctx: commands.Context, mode: str, channel: Optional[discord.TextChannel] = None
    ):
        mode = mode.lower()
        self.leveling.policies.set_announcements(ctx.guild.id, mode, channel.id if channel else None)
        await self._save_policy(ctx)
        text = ANNOUNCE_DESCRIPTIONS[mode].format(channel=channel.mention if channel else "")
        await ctx.send(embed=embeds.success("Leveling updated", text))

    # -------------------- admin: level roles --------------------

    @commands.group(name="levelrole", invoke_without_command=True)
    @commands.guild_only()
    @commands.has_permissions(manage_roles=True)
    async def levelrole(self, ctx: commands.Context):
        p = ctx.clean_prefix
        await ctx.send(f"use: `{p}levelrole add <level> <@role>` / `remove <level>` / `list`")

    @levelrole.command(name="add", usage="<level> <@role>")
    @commands.has_permissions(manage_roles=True)
    async def levelrole_add(self, ctx: commands.Context, level: int, role: discord.Role):
        if not 1 <= level <= 100:
            return await ctx.send(embed=embeds.error("Bad level", "Pick a level between 1 and 100."))
        me = ctx.guild.me
        if not me.guild_permissions.manage_roles:
            return await ctx.send(embed=embeds.error("Missing permissions", "I don't have permission to manage roles."))
        if role >= me.top_role or role.managed:
            return await ctx.send(embed=embeds.error(
                "Can't use that role", f"I cannot assign {role.mention}; it is managed or above my highest role."
            ))
        self.leveling.policies.add_level_role(ctx.guild.id, level, role.id)
        await self._save_policy(ctx)
        await ctx.send(embed=embeds.success(
            "Role reward set", f"{role.mention} will be given to members who reach level **{level}**."
        ))

    @levelrole.command(name="remove", usage="<level>")
    @commands.has_permissions(manage_roles=True)
    async def levelrole_remove(self, ctx: commands.Context, level: int):
        if not self.leveling.policies.remove_level_role(ctx.guild.id, level):
            return await ctx.send(embed=embeds.warning("Nothing to remove", f"There was no role reward for level {level}."))
        await self._save_policy(ctx)
        await ctx.send(embed=embeds.success("Role reward removed", f"Removed the role reward for level {level}."))

    @levelrole.command(name="list")
    @commands.has_permissions(manage_roles=True)
    async def levelrole_list(self, ctx: commands.Context):
        roles = self.leveling.policies.list_level_roles(ctx.guild.id)
        if not roles:
            return await ctx.send(embed=embeds.info("🏆 Level Reward Roles", "No level roles have been set up yet."))
        lines = []
        for lr in roles:
            role = ctx.guild.get_role(int(lr.role_id))
            lines.append(
                f"**Level {lr.level}**: {role.mention}" if role
                else f"**Level {lr.level}**: role not found (ID: {lr.role_id})"
            )
        await ctx.send(embed=embeds.info("🏆 Level Reward Roles", "\n".join(lines)))


# =============== extension setup ===============
async def setup(bot: commands.Bot):
    await bot.add_cog(Leveling(bot, bot.leveling))
