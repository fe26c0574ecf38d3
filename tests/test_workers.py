from __future__ import annotations

from dataclasses import dataclass, field

import pytest

from processes.optimizer.types import Operation
from processes.workers.operators import (
    SCRIPT_OPERATIONS,
    VALIDATION_FLAG,
    WORKER_SCRIPTS,
    parse_operator_args,
    run_operator,
)


@dataclass
class RecordingEnv:
    clock: float = 0.0
    calls: list[tuple[str, str, int]] = field(default_factory=list)

    def now(self) -> float:
        return self.clock

    async def hack(self, target: str, additional_msec: int = 0) -> float:
        self.calls.append(("hack", target, additional_msec))
        return 1.0

    async def grow(self, target: str, additional_msec: int = 0) -> float:
        self.calls.append(("grow", target, additional_msec))
        return 2.0

    async def weaken(self, target: str, additional_msec: int = 0) -> float:
        self.calls.append(("weaken", target, additional_msec))
        return 3.0


def test_script_table_covers_every_operation() -> None:
    assert set(WORKER_SCRIPTS) == set(Operation)
    assert SCRIPT_OPERATIONS["bin/weaken.js"] is Operation.WEAKEN


def test_missing_target_is_rejected() -> None:
    with pytest.raises(ValueError, match="target server missing"):
        parse_operator_args([])


def test_untimed_args() -> None:
    args = parse_operator_args(["n00dles"])
    assert not args.timed
    assert args.delay(now=123) == 0


@pytest.mark.anyio
async def test_timed_worker_delays_to_hit_end_time() -> None:
    env = RecordingEnv(clock=100.0)
    out = await run_operator(env, Operation.WEAKEN, ["n00dles", 4000, 5000])
    assert out == 3.0
    assert env.calls == [("weaken", "n00dles", 900)]


@pytest.mark.anyio
async def test_late_worker_starts_immediately() -> None:
    env = RecordingEnv(clock=2000.0)
    await run_operator(env, Operation.GROW, ["n00dles", 3200, 3240])
    assert env.calls == [("grow", "n00dles", 0)]


@pytest.mark.anyio
async def test_worker_without_timing_runs_undelayed() -> None:
    env = RecordingEnv()
    out = await run_operator(env, Operation.HACK, ["n00dles"])
    assert out == 1.0
    assert env.calls == [("hack", "n00dles", 0)]


@pytest.mark.anyio
async def test_validation_run_does_nothing() -> None:
    env = RecordingEnv()
    out = await run_operator(env, Operation.HACK, [VALIDATION_FLAG])
    assert out is None
    assert env.calls == []
