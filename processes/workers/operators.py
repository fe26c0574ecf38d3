"""Worker entry points launched by the scheduler (hack/grow/weaken).

Each worker receives ``(target, operation_time, end_time)`` and turns the
absolute ``end_time`` into an extra delay measured against its own start, so
every copy of a wave finishes at the same moment no matter when it was
actually launched.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

from netscript.base import Environment
from processes.optimizer.eta import start_delay
from processes.optimizer.types import Operation

VALIDATION_FLAG = "--validation"

WORKER_SCRIPTS: dict[Operation, str] = {
    Operation.HACK: "bin/hack.js",
    Operation.GROW: "bin/grow.js",
    Operation.WEAKEN: "bin/weaken.js",
}

SCRIPT_OPERATIONS: dict[str, Operation] = {v: k for k, v in WORKER_SCRIPTS.items()}

OPERATOR_FUNCTIONS: dict[Operation, Callable[[Environment, str, int], Awaitable[float]]] = {
    Operation.HACK: lambda env, target, delay: env.hack(target, additional_msec=delay),
    Operation.GROW: lambda env, target, delay: env.grow(target, additional_msec=delay),
    Operation.WEAKEN: lambda env, target, delay: env.weaken(target, additional_msec=delay),
}


@dataclass(frozen=True)
class OperatorArgs:
    target: str
    operation_time: float | None = None
    end_time: float | None = None

    @property
    def timed(self) -> bool:
        return bool(self.operation_time) and bool(self.end_time)

    def delay(self, now: float) -> int:
        if not self.timed:
            return 0
        return start_delay(float(self.end_time), now, float(self.operation_time))  # type: ignore[arg-type]


def parse_operator_args(args: Sequence[Any]) -> OperatorArgs:
    if not args or not str(args[0]):
        raise ValueError("target server missing")
    operation_time = float(args[1]) if len(args) > 1 and args[1] else None
    end_time = float(args[2]) if len(args) > 2 and args[2] else None
    return OperatorArgs(target=str(args[0]), operation_time=operation_time, end_time=end_time)


async def run_operator(env: Environment, operation: Operation, args: Sequence[Any]) -> float | None:
    """Run one worker. Returns the operation's result or ``None`` for a validation run."""
    if VALIDATION_FLAG in [str(a) for a in args]:
        return None
    parsed = parse_operator_args(args)
    delay = parsed.delay(env.now())
    return await OPERATOR_FUNCTIONS[operation](env, parsed.target, delay)
