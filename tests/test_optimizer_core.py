from __future__ import annotations

import logging

import pytest

from pipeline.io.settings import Settings
from processes.optimizer.core import ServerOptimizer, optimize_server
from processes.optimizer.types import ErrorCodes, Operation, OptimizerError, WaveKind, WaveState
from processes.workers.operators import WORKER_SCRIPTS
from tests.fixtures.stub_environment import StubEnvironment, StubTarget


def _env(**kwargs) -> StubEnvironment:
    # 100 slots in total
    return StubEnvironment(hosts={"a": (87.5, 0.0), "b": (52.5, 0.0), "c": (35.0, 0.0)}, **kwargs)


def _converge_after(sleeps: int):
    def hook(env: StubEnvironment) -> None:
        if len(env.sleeps) >= sleeps:
            t = env.targets["n00dles"]
            t.security = t.min_security
            t.money = t.max_money

    return hook


@pytest.mark.anyio
async def test_unknown_target_is_fatal() -> None:
    env = _env()
    with pytest.raises(OptimizerError) as exc:
        await optimize_server(env, "nowhere")
    assert exc.value.code is ErrorCodes.UNKNOWN_TARGET
    assert env.launches == []


@pytest.mark.anyio
async def test_force_run_dispatches_once_without_waiting() -> None:
    env = _env()
    result = await optimize_server(env, "n00dles", force_run=True)

    assert env.sleeps == []
    assert result.iterations == 1
    threads = result.to_dict()["threads"]
    assert threads == {"weaken": 10, "grow": 90}
    # grow goes to the biggest hosts, weaken mops up from the smallest
    grow_hosts = [d.host for d in result.dispatches if d.kind is WaveKind.GROW]
    weaken_hosts = [d.host for d in result.dispatches if d.kind is WaveKind.WEAKEN]
    assert grow_hosts == ["a", "b", "c"]
    assert weaken_hosts == ["c"]


@pytest.mark.anyio
async def test_force_run_on_optimal_target_still_dispatches_weaken() -> None:
    env = _env(targets={"n00dles": StubTarget(security=1.0, money=100.0)})
    result = await optimize_server(env, "n00dles", force_run=True)

    kinds = {d.kind for d in result.dispatches}
    assert kinds == {WaveKind.WEAKEN}
    assert env.sleeps == []


@pytest.mark.anyio
async def test_optimal_target_returns_without_dispatching() -> None:
    env = _env(targets={"n00dles": StubTarget(security=1.0, money=100.0)})
    result = await optimize_server(env, "n00dles")

    assert result.iterations == 0
    assert env.launches == []
    assert env.sleeps == []
    assert result.final_state is not None and result.final_state.is_optimal


@pytest.mark.anyio
async def test_loop_terminates_once_target_is_optimal() -> None:
    env = _env(on_sleep=_converge_after(2))
    result = await optimize_server(env, "n00dles")

    assert result.final_state is not None and result.final_state.is_optimal
    assert result.iterations == 2
    assert all(ms > 0 for ms in env.sleeps)
    # first wait is for the grow wave, which lands before weaken
    assert env.sleeps[0] == 3300


@pytest.mark.anyio
async def test_drain_waits_for_the_last_eta() -> None:
    env = _env(on_sleep=_converge_after(1))
    optimizer = ServerOptimizer(env)
    await optimizer.run("n00dles")

    # grow lands at 3300; money is then full so the loop waits for the
    # weaken ETA before the drain, which then has nothing left to wait for
    assert env.sleeps == [3300, 800]
    assert env.now() >= max(optimizer.weaken.eta, optimizer.grow.eta)


@pytest.mark.anyio
async def test_full_money_skips_grow() -> None:
    env = _env(targets={"n00dles": StubTarget(security=5.0, money=100.0)})
    result = await optimize_server(env, "n00dles", force_run=True)

    assert {d.kind for d in result.dispatches} == {WaveKind.WEAKEN}


@pytest.mark.anyio
async def test_iteration_limit_stops_a_target_that_never_converges(caplog) -> None:
    env = _env()
    with caplog.at_level(logging.WARNING, logger="processes.optimizer.core"):
        result = await optimize_server(env, "n00dles", max_iterations=3)

    assert result.iterations == 3
    assert not result.final_state.is_optimal
    assert any("iteration_limit" in r.getMessage() for r in caplog.records)


@pytest.mark.anyio
async def test_expired_etas_fall_back_to_fixed_wait(caplog) -> None:
    env = _env(clock=50_000.0)
    optimizer = ServerOptimizer(env, Settings(fallback_wait_ms=3000))
    optimizer.weaken.eta = 1000
    optimizer.grow.eta = 2000

    with caplog.at_level(logging.WARNING, logger="processes.optimizer.core"):
        await optimizer._wait_for_next_eta()

    assert env.sleeps == [3000]
    assert any("eta_expired" in r.getMessage() for r in caplog.records)


@pytest.mark.anyio
async def test_past_sooner_eta_waits_for_the_later_one() -> None:
    env = _env(clock=4000.0)
    optimizer = ServerOptimizer(env)
    optimizer.grow.eta = 3300
    optimizer.weaken.eta = 4100

    await optimizer._wait_for_next_eta()

    assert env.sleeps == [100]


@pytest.mark.anyio
async def test_running_wave_is_not_redispatched() -> None:
    env = _env()
    optimizer = ServerOptimizer(env, max_iterations=1)
    await optimizer.run("n00dles")
    assert optimizer.weaken.batch == 1
    assert optimizer.grow.batch == 1

    # processes are still alive: a second pass must not dispatch either wave
    env2 = _env()
    opt2 = ServerOptimizer(env2)
    result = await opt2.run("n00dles", force_run=True)
    first = len(env2.launches)
    opt2._iterate("n00dles", result)
    assert len(env2.launches) == first


@pytest.mark.anyio
async def test_long_waits_are_split_into_polling_intervals() -> None:
    env = _env(targets={"n00dles": StubTarget(hack_time=600_000)})
    optimizer = ServerOptimizer(env, Settings(max_poll_ms=30_000), max_iterations=1)
    await optimizer.run("n00dles")

    assert max(env.sleeps) == 30_000
    # drain still reaches the weaken ETA: 2_400_000 + 40 + 20 -> 2_400_100
    assert env.now() == optimizer.weaken.eta == 2_400_100


@pytest.mark.anyio
async def test_fallback_wait_is_clamped_to_the_polling_interval() -> None:
    env = _env(clock=50_000.0)
    optimizer = ServerOptimizer(env, Settings(fallback_wait_ms=3000, max_poll_ms=1000))
    optimizer.weaken.eta = 1000
    optimizer.grow.eta = 2000

    await optimizer._wait_for_next_eta()

    assert env.sleeps == [1000]


class TestLiveness:
    """Waves are reconciled against the environment's process table every iteration."""

    @pytest.mark.anyio
    async def test_partly_dead_wave_keeps_running_with_live_threads(self) -> None:
        env = _env()
        optimizer = ServerOptimizer(env)
        result = await optimizer.run("n00dles", force_run=True)
        dead = optimizer.grow.handles[0]
        assert (dead.host, dead.threads) == ("a", 50)
        env.running.pop(dead.pid)
        launched = len(env.launches)

        optimizer._iterate("n00dles", result)

        assert optimizer.grow.state is WaveState.RUNNING
        assert optimizer.grow.committed_threads == 40
        assert dead.pid not in [h.pid for h in optimizer.grow.handles]
        assert optimizer.grow.batch == 1
        assert len(env.launches) == launched

    @pytest.mark.anyio
    async def test_dead_wave_is_resized_from_free_slots_plus_live_threads(self) -> None:
        env = _env()
        optimizer = ServerOptimizer(env)
        result = await optimizer.run("n00dles", force_run=True)
        grow_eta = optimizer.grow.eta
        for handle in optimizer.grow.handles:
            env.running.pop(handle.pid)
        env.clock = 500.0
        launched = len(env.launches)

        optimizer._iterate("n00dles", result)

        # 90 free slots + 10 live weaken threads -> a 100 thread pool, 90 for grow
        relaunched = env.launches[launched:]
        assert sum(launch.threads for launch in relaunched) == 90
        assert {launch.script for launch in relaunched} == {WORKER_SCRIPTS[Operation.GROW]}
        assert optimizer.grow.batch == 2
        assert optimizer.grow.eta > grow_eta
        assert optimizer.weaken.batch == 1
        assert optimizer.weaken.committed_threads == 10
