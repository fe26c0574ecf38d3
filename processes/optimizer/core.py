"""Convergence loop driving a target to minimum security and maximum money.

Two waves (weaken, grow) run concurrently and are re-armed independently: a
wave whose processes have all finished gets a fresh ETA and is dispatched
again with whatever capacity is free plus the threads still held by the
other, running wave.
"""

from __future__ import annotations

import json
import logging

from netscript.base import Environment
from pipeline.io.settings import Settings

from .allocator import CapacityLedger, allocate_grow, allocate_weaken, split_threads
from .capacity import scan_capacity
from .dispatcher import DispatchReport, WaveDispatcher
from .eta import compute_eta, wait_time
from .types import (
    ErrorCodes,
    OptimizeResult,
    OptimizerError,
    TargetState,
    Wave,
    WaveKind,
    WaveState,
)

logger = logging.getLogger(__name__)


def read_target(env: Environment, target: str) -> TargetState:
    return TargetState(
        security=env.security_level(target),
        min_security=env.min_security_level(target),
        money=env.money_available(target),
        max_money=env.max_money(target),
    )


async def wait(env: Environment, ms: float, label: str) -> None:
    logger.info(json.dumps({"event": "wait", "label": label, "ms": round(ms, 3)}))
    await env.sleep(ms)


class ServerOptimizer:
    def __init__(
        self,
        env: Environment,
        settings: Settings | None = None,
        *,
        max_iterations: int | None = None,
    ) -> None:
        self.env = env
        self.settings = settings or Settings()
        self.max_iterations = max_iterations
        self.weaken = Wave(WaveKind.WEAKEN)
        self.grow = Wave(WaveKind.GROW)

    async def run(self, target: str, force_run: bool = False) -> OptimizeResult:
        """Optimize ``target``.

        With ``force_run`` a single dispatch pass is made over the currently
        free capacity and the call returns without waiting for anything.
        """
        env = self.env
        if not env.server_exists(target):
            raise OptimizerError(
                ErrorCodes.UNKNOWN_TARGET,
                f"server '{target}' does not exist",
                details={"target": target},
            )

        result = OptimizeResult(target=target, force_run=force_run, started_at=env.now())
        result.residuals = {kind.value: 0 for kind in WaveKind}
        state = read_target(env, target)

        while not state.is_optimal or force_run:
            result.iterations += 1
            self._iterate(target, result)

            if force_run:
                break

            await self._wait_for_next_eta()

            state = read_target(env, target)
            if state.money_diff <= 0:
                # money is full; let the in-flight weakens land before re-checking
                await self._wait_until(self.weaken.eta, "waiting for last Weaken")
                state = read_target(env, target)

            if self.max_iterations is not None and result.iterations >= self.max_iterations:
                logger.warning(
                    json.dumps(
                        {
                            "event": "iteration_limit",
                            "target": target,
                            "iterations": result.iterations,
                        }
                    )
                )
                break

        if not force_run:
            last = max(self.weaken.eta, self.grow.eta)
            if last > env.now():
                logger.info(
                    json.dumps({"event": "drain", "target": target, "ms": round(last - env.now(), 3)})
                )
            while last > env.now():
                await self._wait_until(last, "waiting for last ETA")
            logger.info(json.dumps({"event": "optimized", "target": target, "iterations": result.iterations}))

        result.final_state = read_target(env, target)
        result.finished_at = env.now()
        return result

    def _iterate(self, target: str, result: OptimizeResult) -> None:
        env = self.env
        ledger = CapacityLedger(scan_capacity(env, self.settings))
        hack_time = env.hack_time(target)

        # Threads of a still-running wave are sunk; they count toward the pool
        # the restarting wave is sized from but are not requested again.
        pool = ledger.total
        for wave in (self.weaken, self.grow):
            live = wave.reconcile(env.is_running)
            if live > 0:
                pool += live
            else:
                wave.reset(compute_eta(env.now(), hack_time, wave.kind))

        split = split_threads(pool)
        state = read_target(env, target)
        dispatcher = WaveDispatcher(env, self.settings, iteration=result.iterations)

        logger.info(
            json.dumps(
                {
                    "event": "iteration",
                    "target": target,
                    "iteration": result.iterations,
                    "pool": pool,
                    "weaken_threads": split.weaken,
                    "grow_threads": split.grow,
                    "security_diff": round(state.security_diff, 4),
                    "money_diff": round(state.money_diff, 2),
                }
            )
        )

        if self.grow.state is WaveState.IDLE and state.money_diff > 0:
            self.grow.batch += 1
            report = dispatcher.dispatch(
                self.grow, target, allocate_grow(split.grow, ledger), hack_time, ledger
            )
            self._collect(report, WaveKind.GROW, result)

        if self.weaken.state is WaveState.IDLE:
            self.weaken.batch += 1
            report = dispatcher.dispatch(
                self.weaken, target, allocate_weaken(split.weaken, ledger), hack_time, ledger
            )
            self._collect(report, WaveKind.WEAKEN, result)

    @staticmethod
    def _collect(report: DispatchReport, kind: WaveKind, result: OptimizeResult) -> None:
        result.dispatches.extend(report.records)
        result.residuals[kind.value] = result.residuals.get(kind.value, 0) + report.residual

    async def _wait_for_next_eta(self) -> None:
        now = self.env.now()
        sooner, later = sorted((self.weaken, self.grow), key=lambda w: w.eta)
        nxt = sooner if sooner.eta >= now else later
        if wait_time(nxt.eta, now) > 0:
            await self._wait_until(nxt.eta, f"waiting for {nxt.label}")
            return
        logger.warning(
            json.dumps(
                {
                    "event": "eta_expired",
                    "weaken_eta": self.weaken.eta,
                    "grow_eta": self.grow.eta,
                    "now": now,
                }
            )
        )
        await wait(
            self.env, min(self.settings.fallback_wait_ms, self.settings.max_poll_ms), "ETAs expired"
        )

    async def _wait_until(self, eta: float, label: str) -> None:
        # at most one polling interval; the caller re-checks liveness after
        ms = min(wait_time(eta, self.env.now()), self.settings.max_poll_ms)
        if ms > 0:
            await wait(self.env, ms, label)


async def optimize_server(
    env: Environment,
    target: str,
    *,
    settings: Settings | None = None,
    force_run: bool = False,
    max_iterations: int | None = None,
) -> OptimizeResult:
    optimizer = ServerOptimizer(env, settings, max_iterations=max_iterations)
    return await optimizer.run(target, force_run=force_run)
