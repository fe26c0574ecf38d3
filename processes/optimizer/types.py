from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

# Base safety margin for wave completion checks. Grow gets a larger margin so
# that it finishes before the weaken wave when both land on the same tick.
TIMING_BUFFER_MS = 20


class ErrorCodes(str, Enum):
    UNKNOWN_TARGET = "UNKNOWN_TARGET"
    CONFIG_ERROR = "CONFIG_ERROR"
    INVALID_ENVIRONMENT = "INVALID_ENVIRONMENT"


class OptimizerError(Exception):
    def __init__(
        self,
        code: ErrorCodes,
        message: str,
        user_message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.user_message = user_message or message
        self.details = details or {}


class Operation(str, Enum):
    HACK = "hack"
    GROW = "grow"
    WEAKEN = "weaken"


class WaveKind(str, Enum):
    WEAKEN = "weaken"
    GROW = "grow"

    @property
    def multiplier(self) -> float:
        return _WAVE_MULTIPLIERS[self]

    @property
    def margin_ms(self) -> int:
        return _WAVE_MARGINS[self]

    @property
    def operation(self) -> Operation:
        return Operation(self.value)

    @property
    def label(self) -> str:
        return self.value.capitalize()


_WAVE_MULTIPLIERS: dict[WaveKind, float] = {
    WaveKind.WEAKEN: 4.0,
    WaveKind.GROW: 3.2,
}

_WAVE_MARGINS: dict[WaveKind, int] = {
    WaveKind.WEAKEN: TIMING_BUFFER_MS * 2,
    WaveKind.GROW: TIMING_BUFFER_MS * 3,
}


class WaveState(str, Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"


@dataclass(frozen=True)
class Host:
    hostname: str
    max_ram: float
    used_ram: float
    slot_ram: float = 1.75

    @property
    def max_slots(self) -> int:
        return int(math.floor(max(0.0, self.max_ram) / self.slot_ram))

    @property
    def used_slots(self) -> int:
        return int(math.ceil(max(0.0, self.used_ram) / self.slot_ram))

    @property
    def free_slots(self) -> int:
        return int(math.floor(max(0.0, self.max_ram - self.used_ram) / self.slot_ram))


@dataclass(frozen=True)
class ProcessHandle:
    pid: int
    threads: int
    host: str


@dataclass
class Wave:
    """One batch of same-kind workers aimed at a common completion time.

    ``eta`` is the absolute time (ms, environment clock) at which the wave is
    polled; workers are told to finish ``kind.margin_ms`` earlier.
    """

    kind: WaveKind
    eta: float = 0.0
    handles: list[ProcessHandle] = field(default_factory=list)
    batch: int = 0

    @property
    def label(self) -> str:
        return self.kind.label

    @property
    def state(self) -> WaveState:
        return WaveState.RUNNING if self.handles else WaveState.IDLE

    @property
    def committed_threads(self) -> int:
        return sum(h.threads for h in self.handles)

    def reset(self, eta: float) -> None:
        self.eta = eta
        self.handles = []

    def record(self, handle: ProcessHandle) -> None:
        self.handles.append(handle)

    def reconcile(self, is_live: Callable[[int], bool]) -> int:
        """Drop handles whose process is gone and return the live thread count."""
        self.handles = [h for h in self.handles if is_live(h.pid)]
        return self.committed_threads


@dataclass(frozen=True)
class TargetState:
    security: float
    min_security: float
    money: float
    max_money: float

    @property
    def security_diff(self) -> float:
        return self.security - self.min_security

    @property
    def money_diff(self) -> float:
        return self.max_money - self.money

    @property
    def is_optimal(self) -> bool:
        return self.security <= self.min_security and self.money >= self.max_money


@dataclass(frozen=True)
class DispatchRecord:
    iteration: int
    batch: int
    kind: WaveKind
    host: str
    pid: int
    threads: int
    duration_ms: float
    end_time: float
    dispatched_at: float

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["kind"] = self.kind.value
        return d


@dataclass
class OptimizeResult:
    target: str
    force_run: bool
    iterations: int = 0
    dispatches: list[DispatchRecord] = field(default_factory=list)
    final_state: TargetState | None = None
    started_at: float = 0.0
    finished_at: float = 0.0
    residuals: dict[str, int] = field(default_factory=dict)

    @property
    def duration_ms(self) -> float:
        return self.finished_at - self.started_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": self.target,
            "force_run": self.force_run,
            "iterations": self.iterations,
            "dispatch_count": len(self.dispatches),
            "threads": {
                kind.value: sum(d.threads for d in self.dispatches if d.kind is kind)
                for kind in WaveKind
            },
            "residuals": dict(self.residuals),
            "final_state": asdict(self.final_state) if self.final_state else None,
            "duration_ms": self.duration_ms,
        }
