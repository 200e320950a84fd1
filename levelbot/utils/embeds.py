import discord
from typing import Optional

def success(title: str, description: Optional[str] = None) -> discord.Embed:
    return discord.Embed(title=title, description=description, color=discord.Color.green())

def error(title: str, description: Optional[str] = None) -> discord.Embed:
    return discord.Embed(title=title, description=description, color=discord.Color.red())

def warning(title: str, description: Optional[str] = None) -> discord.Embed:
    return discord.Embed(title=title, description=description, color=discord.Color.orange())

def info(title: str, description: Optional[str] = None) -> discord.Embed:
    return discord.Embed(title=title, description=description, color=discord.Color.blurple())

def level_up(description: str, avatar_url: Optional[str] = None) -> discord.Embed:
    e = discord.Embed(title="🎉 Level Up!", description=description, color=discord.Color.gold())
    if avatar_url:
        e.set_thumbnail(url=avatar_url)
    return e
