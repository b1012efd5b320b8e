"""Guild permission groups for discord.py bots."""
from .core import dcog, Cog

__version__ = "0.1.0"
