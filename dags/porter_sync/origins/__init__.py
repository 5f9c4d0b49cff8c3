from porter_sync.origins.registry import available_origins, get_origin, register
from porter_sync.origins import discord  # noqa: F401  (registers itself)

__all__ = ["available_origins", "get_origin", "register"]
