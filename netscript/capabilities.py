from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from typing import Any

from .base import HOME, Environment


class PortCracker(str, Enum):
    BRUTE_SSH = "BruteSSH.exe"
    FTP_CRACK = "FTPCrack.exe"
    RELAY_SMTP = "relaySMTP.exe"
    HTTP_WORM = "HTTPWorm.exe"
    SQL_INJECT = "SQLInject.exe"


PORT_OPENERS: dict[PortCracker, Callable[[Environment, str], Any]] = {
    PortCracker.BRUTE_SSH: lambda env, host: env.brutessh(host),
    PortCracker.FTP_CRACK: lambda env, host: env.ftpcrack(host),
    PortCracker.RELAY_SMTP: lambda env, host: env.relaysmtp(host),
    PortCracker.HTTP_WORM: lambda env, host: env.httpworm(host),
    PortCracker.SQL_INJECT: lambda env, host: env.sqlinject(host),
}


def available_crackers(env: Environment) -> list[PortCracker]:
    """Port crackers present on home, in canonical order."""
    return [c for c in PortCracker if env.file_exists(c.value, HOME)]


def open_port(env: Environment, cracker: PortCracker, host: str) -> Any:
    return PORT_OPENERS[cracker](env, host)
