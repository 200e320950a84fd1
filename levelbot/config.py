import os
from dataclasses import dataclass
from typing import Optional

@dataclass
class Settings:
    token: str
    owners: set[int]
    db_path: str = "levelbot.db"
    prefix: str = ","
    xp_cooldown_s: int = 300
    log_level: str = "INFO"

def _int_env(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}")

def load_settings() -> Settings:
    from dotenv import load_dotenv
    load_dotenv()
    token = os.getenv("DISCORD_TOKEN", "").strip()
    owners = {int(x) for x in os.getenv("BOT_OWNERS", "").replace(" ", "").split(",") if x}
    if not token:
        raise RuntimeError("Missing DISCORD_TOKEN in environment (.env)")
    return Settings(
        token=token,
        owners=owners,
        db_path=os.getenv("DATABASE_PATH", "").strip() or "levelbot.db",
        prefix=os.getenv("COMMAND_PREFIX", "").strip() or ",",
        xp_cooldown_s=_int_env("XP_COOLDOWN_SECONDS", 300),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
    )
