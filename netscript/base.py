"""Contract of the game environment consumed by the scheduler, spider and workers."""

from __future__ import annotations

from collections.abc import Awaitable
from typing import Any, Protocol, runtime_checkable

HOME = "home"


@runtime_checkable
class Environment(Protocol):
    # clock
    def now(self) -> float: ...

    def sleep(self, ms: float) -> Awaitable[None]: ...

    # network
    def server_exists(self, host: str) -> bool: ...

    def scan(self, host: str) -> list[str]: ...

    def has_root_access(self, host: str) -> bool: ...

    def max_ram(self, host: str) -> float: ...

    def used_ram(self, host: str) -> float: ...

    def required_hacking_level(self, host: str) -> int: ...

    def required_ports(self, host: str) -> int: ...

    def hacking_level(self) -> int: ...

    def file_exists(self, filename: str, host: str = HOME) -> bool: ...

    # target state
    def hack_time(self, host: str) -> float: ...

    def security_level(self, host: str) -> float: ...

    def min_security_level(self, host: str) -> float: ...

    def money_available(self, host: str) -> float: ...

    def max_money(self, host: str) -> float: ...

    # processes
    def exec(self, script: str, host: str, threads: int, *args: Any) -> int: ...

    def is_running(self, pid: int) -> bool: ...

    def scp(self, script: str, host: str, source: str = HOME) -> bool: ...

    # root access
    def nuke(self, host: str) -> bool: ...

    def brutessh(self, host: str) -> bool: ...

    def ftpcrack(self, host: str) -> bool: ...

    def relaysmtp(self, host: str) -> bool: ...

    def httpworm(self, host: str) -> bool: ...

    def sqlinject(self, host: str) -> bool: ...

    # worker-side operations
    def hack(self, target: str, additional_msec: int = 0) -> Awaitable[float]: ...

    def grow(self, target: str, additional_msec: int = 0) -> Awaitable[float]: ...

    def weaken(self, target: str, additional_msec: int = 0) -> Awaitable[float]: ...
