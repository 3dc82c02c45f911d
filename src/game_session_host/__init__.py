"""Provision ephemeral game-server sessions and hand out relay join codes."""

__version__ = "0.1.0"
