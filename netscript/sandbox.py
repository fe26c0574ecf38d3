"""Deterministic in-memory game environment with a virtual clock.

Used by the CLI (``--env`` file) and the test-suite. The game's own formulas
are not modelled; security and money move by fixed per-thread amounts so the
scheduler can be exercised end to end.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pipeline.io.settings import load_config
from processes.optimizer.types import Operation
from processes.workers.operators import SCRIPT_OPERATIONS, WORKER_SCRIPTS, parse_operator_args

from .base import HOME

OPERATION_TIME_MULTIPLIERS: dict[Operation, float] = {
    Operation.HACK: 1.0,
    Operation.GROW: 3.2,
    Operation.WEAKEN: 4.0,
}


@dataclass
class Formulas:
    weaken_per_thread: float = 0.05
    grow_rate: float = 0.002
    grow_security_per_thread: float = 0.004
    hack_fraction: float = 0.002
    hack_security_per_thread: float = 0.002
    max_security: float = 100.0

    @classmethod
    def from_dict(cls, d: dict[str, Any] | None) -> Formulas:
        if not d:
            return cls()
        return cls(**{k: v for k, v in d.items() if k in cls.__annotations__})


@dataclass
class SandboxServer:
    hostname: str
    max_ram: float = 0.0
    used_ram: float = 0.0
    root: bool = False
    neighbors: list[str] = field(default_factory=list)
    required_level: int = 1
    required_ports: int = 0
    security: float = 1.0
    min_security: float = 1.0
    money: float = 0.0
    max_money: float = 0.0
    hack_time: float = 1000.0
    files: set[str] = field(default_factory=set)
    open_ports: set[str] = field(default_factory=set)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> SandboxServer:
        d2 = {k: v for k, v in d.items() if k in cls.__annotations__}
        d2["neighbors"] = list(d2.get("neighbors", []))
        d2["files"] = set(d2.get("files", []))
        d2.pop("open_ports", None)
        return cls(**d2)


@dataclass
class SandboxProcess:
    pid: int
    script: str
    host: str
    threads: int
    ram: float
    args: tuple[Any, ...]
    started_at: float
    finish_at: float
    operation: Operation | None = None
    target: str | None = None


class SandboxEnvironment:
    def __init__(
        self,
        servers: list[SandboxServer],
        *,
        hacking_level: int = 1,
        programs: list[str] | None = None,
        script_ram: float = 1.75,
        formulas: Formulas | None = None,
        install_workers: bool = True,
        start_time: float = 0.0,
    ) -> None:
        self.servers: dict[str, SandboxServer] = {s.hostname: s for s in servers}
        if HOME not in self.servers:
            self.servers[HOME] = SandboxServer(hostname=HOME, root=True)
        self._link_neighbors()
        self._hacking_level = hacking_level
        self.script_ram = script_ram
        self.formulas = formulas or Formulas()
        self.clock = float(start_time)
        self.processes: dict[int, SandboxProcess] = {}
        self.finished: list[SandboxProcess] = []
        self.exec_log: list[dict[str, Any]] = []
        self._next_pid = 1
        home = self.servers[HOME]
        home.files.update(programs or [])
        home.files.update(WORKER_SCRIPTS.values())
        if install_workers:
            for server in self.servers.values():
                if server.root:
                    server.files.update(WORKER_SCRIPTS.values())

    @classmethod
    def from_dict(cls, cfg: dict[str, Any]) -> SandboxEnvironment:
        return cls(
            [SandboxServer.from_dict(s) for s in cfg.get("servers", [])],
            hacking_level=int(cfg.get("hacking_level", 1)),
            programs=list(cfg.get("programs", [])),
            script_ram=float(cfg.get("script_ram", 1.75)),
            formulas=Formulas.from_dict(cfg.get("formulas")),
            install_workers=bool(cfg.get("install_workers", True)),
            start_time=float(cfg.get("start_time", 0.0)),
        )

    @classmethod
    def from_path(cls, path: Path) -> SandboxEnvironment:
        return cls.from_dict(load_config(path))

    def _link_neighbors(self) -> None:
        for server in list(self.servers.values()):
            for name in server.neighbors:
                other = self.servers.get(name)
                if other is not None and server.hostname not in other.neighbors:
                    other.neighbors.append(server.hostname)

    def _server(self, host: str) -> SandboxServer:
        try:
            return self.servers[host]
        except KeyError:
            raise KeyError(f"server '{host}' does not exist") from None

    # ------------------------------------------------------------------ clock

    def now(self) -> float:
        return self.clock

    async def sleep(self, ms: float) -> None:
        self.advance(ms)
        await asyncio.sleep(0)

    def advance(self, ms: float) -> None:
        until = self.clock + max(0.0, float(ms))
        self._settle(until)
        self.clock = until

    def _settle(self, until: float) -> None:
        due = sorted(
            (p for p in self.processes.values() if p.finish_at <= until),
            key=lambda p: (p.finish_at, p.pid),
        )
        for proc in due:
            self.clock = max(self.clock, proc.finish_at)
            if proc.operation is not None and proc.target is not None:
                self._apply(proc.operation, proc.target, proc.threads)
            del self.processes[proc.pid]
            self.finished.append(proc)

    def _apply(self, operation: Operation, target: str, threads: int) -> float:
        f = self.formulas
        server = self._server(target)
        if operation is Operation.WEAKEN:
            before = server.security
            server.security = max(server.min_security, server.security - f.weaken_per_thread * threads)
            return before - server.security
        if operation is Operation.GROW:
            before = server.money
            grown = (server.money + threads) * (1.0 + f.grow_rate * threads)
            server.money = min(server.max_money, grown)
            server.security = min(f.max_security, server.security + f.grow_security_per_thread * threads)
            return server.money - before
        stolen = server.money * min(1.0, f.hack_fraction * threads)
        server.money -= stolen
        server.security = min(f.max_security, server.security + f.hack_security_per_thread * threads)
        return stolen

    # ---------------------------------------------------------------- network

    def server_exists(self, host: str) -> bool:
        return host in self.servers

    def scan(self, host: str) -> list[str]:
        return list(self._server(host).neighbors)

    def has_root_access(self, host: str) -> bool:
        return self._server(host).root

    def max_ram(self, host: str) -> float:
        return self._server(host).max_ram

    def used_ram(self, host: str) -> float:
        self._settle(self.clock)
        running = sum(p.ram for p in self.processes.values() if p.host == host)
        return self._server(host).used_ram + running

    def required_hacking_level(self, host: str) -> int:
        return self._server(host).required_level

    def required_ports(self, host: str) -> int:
        return self._server(host).required_ports

    def hacking_level(self) -> int:
        return self._hacking_level

    def file_exists(self, filename: str, host: str = HOME) -> bool:
        return filename in self._server(host).files

    # ----------------------------------------------------------- target state

    def hack_time(self, host: str) -> float:
        return self._server(host).hack_time

    def security_level(self, host: str) -> float:
        self._settle(self.clock)
        return self._server(host).security

    def min_security_level(self, host: str) -> float:
        return self._server(host).min_security

    def money_available(self, host: str) -> float:
        self._settle(self.clock)
        return self._server(host).money

    def max_money(self, host: str) -> float:
        return self._server(host).max_money

    # -------------------------------------------------------------- processes

    def exec(self, script: str, host: str, threads: int, *args: Any) -> int:
        self._settle(self.clock)
        server = self.servers.get(host)
        if server is None or not server.root or threads < 1:
            return 0
        if script not in server.files:
            return 0
        ram = threads * self.script_ram
        if ram > server.max_ram - self.used_ram(host) + 1e-9:
            return 0

        operation = SCRIPT_OPERATIONS.get(script)
        target: str | None = None
        finish_at = self.clock
        if operation is not None:
            parsed = parse_operator_args(args)
            if parsed.target not in self.servers:
                return 0
            target = parsed.target
            duration = self.hack_time(target) * OPERATION_TIME_MULTIPLIERS[operation]
            finish_at = self.clock + parsed.delay(self.clock) + duration

        pid = self._next_pid
        self._next_pid += 1
        self.processes[pid] = SandboxProcess(
            pid=pid,
            script=script,
            host=host,
            threads=threads,
            ram=ram,
            args=tuple(args),
            started_at=self.clock,
            finish_at=finish_at,
            operation=operation,
            target=target,
        )
        self.exec_log.append(
            {"pid": pid, "script": script, "host": host, "threads": threads, "at": self.clock, "finish_at": finish_at}
        )
        return pid

    def is_running(self, pid: int) -> bool:
        self._settle(self.clock)
        return pid in self.processes

    def kill(self, pid: int) -> bool:
        return self.processes.pop(pid, None) is not None

    def scp(self, script: str, host: str, source: str = HOME) -> bool:
        src = self.servers.get(source)
        dst = self.servers.get(host)
        if src is None or dst is None or script not in src.files:
            return False
        dst.files.add(script)
        return True

    # ------------------------------------------------------------ root access

    def nuke(self, host: str) -> bool:
        server = self._server(host)
        if len(server.open_ports) < server.required_ports:
            return False
        server.root = True
        return True

    def _open(self, host: str, program: str) -> bool:
        if program not in self.servers[HOME].files:
            return False
        self._server(host).open_ports.add(program)
        return True

    def brutessh(self, host: str) -> bool:
        return self._open(host, "BruteSSH.exe")

    def ftpcrack(self, host: str) -> bool:
        return self._open(host, "FTPCrack.exe")

    def relaysmtp(self, host: str) -> bool:
        return self._open(host, "relaySMTP.exe")

    def httpworm(self, host: str) -> bool:
        return self._open(host, "HTTPWorm.exe")

    def sqlinject(self, host: str) -> bool:
        return self._open(host, "SQLInject.exe")

    # ------------------------------------------------------ worker operations

    async def _operate(self, operation: Operation, target: str, additional_msec: int) -> float:
        duration = self.hack_time(target) * OPERATION_TIME_MULTIPLIERS[operation]
        self.advance(max(0, additional_msec) + duration)
        await asyncio.sleep(0)
        return self._apply(operation, target, 1)

    async def hack(self, target: str, additional_msec: int = 0) -> float:
        return await self._operate(Operation.HACK, target, additional_msec)

    async def grow(self, target: str, additional_msec: int = 0) -> float:
        return await self._operate(Operation.GROW, target, additional_msec)

    async def weaken(self, target: str, additional_msec: int = 0) -> float:
        return await self._operate(Operation.WEAKEN, target, additional_msec)
