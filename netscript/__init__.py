"""Game environment contract and a deterministic sandbox implementation."""

from .base import HOME, Environment
from .capabilities import PORT_OPENERS, PortCracker, available_crackers, open_port

__all__ = [
    "HOME",
    "Environment",
    "PORT_OPENERS",
    "PortCracker",
    "available_crackers",
    "open_port",
]
