from __future__ import annotations
import logging
import sys

FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

def setup_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for h in list(root.handlers):
        root.removeHandler(h)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    root.addHandler(handler)
    # discord.http logs every rate limit at INFO
    logging.getLogger("discord.http").setLevel(logging.WARNING)
