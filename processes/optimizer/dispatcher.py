from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field

from netscript.base import Environment
from pipeline.io.settings import Settings
from processes.workers.operators import WORKER_SCRIPTS

from .allocator import Allocation, CapacityLedger
from .capacity import free_slots
from .eta import dispatch_end_time, natural_duration
from .types import DispatchRecord, ProcessHandle, Wave

logger = logging.getLogger(__name__)


@dataclass
class DispatchReport:
    requested: int
    launched: int = 0
    failures: list[str] = field(default_factory=list)
    records: list[DispatchRecord] = field(default_factory=list)

    @property
    def residual(self) -> int:
        return self.requested - self.launched


class WaveDispatcher:
    """Launches the workers of one wave, best effort.

    A host that rejects a launch (gone, no capacity left) is logged and its
    threads are carried as residual; nothing is retried within the pass.
    """

    def __init__(self, env: Environment, settings: Settings, iteration: int = 0) -> None:
        self.env = env
        self.settings = settings
        self.iteration = iteration

    def dispatch(
        self,
        wave: Wave,
        target: str,
        allocation: Allocation,
        hack_time: float,
        ledger: CapacityLedger | None = None,
    ) -> DispatchReport:
        script = WORKER_SCRIPTS[wave.kind.operation]
        duration = natural_duration(hack_time, wave.kind)
        end_time = dispatch_end_time(wave.eta, wave.kind)
        report = DispatchReport(requested=allocation.requested)

        for hostname, assigned in allocation.assignments:
            live = free_slots(self.env, hostname, self.settings)
            threads = min(assigned, live)
            if threads <= 0:
                report.failures.append(hostname)
                logger.warning(
                    json.dumps(
                        {
                            "event": "launch_failed",
                            "reason": "no_free_slots",
                            "wave": wave.kind.value,
                            "host": hostname,
                            "threads": assigned,
                        }
                    )
                )
                continue

            pid = self.env.exec(script, hostname, threads, target, duration, end_time)
            if pid <= 0:
                report.failures.append(hostname)
                logger.warning(
                    json.dumps(
                        {
                            "event": "launch_failed",
                            "reason": "exec_rejected",
                            "wave": wave.kind.value,
                            "host": hostname,
                            "threads": threads,
                        }
                    )
                )
                continue

            wave.record(ProcessHandle(pid=pid, threads=threads, host=hostname))
            if ledger is not None:
                ledger.consume(hostname, threads)
            report.launched += threads
            report.records.append(
                DispatchRecord(
                    iteration=self.iteration,
                    batch=wave.batch,
                    kind=wave.kind,
                    host=hostname,
                    pid=pid,
                    threads=threads,
                    duration_ms=duration,
                    end_time=end_time,
                    dispatched_at=self.env.now(),
                )
            )

        # residual includes threads the allocator could not place
        logger.info(
            json.dumps(
                {
                    "event": "wave_dispatch",
                    "wave": wave.kind.value,
                    "batch": wave.batch,
                    "requested": report.requested,
                    "launched": report.launched,
                    "residual": report.residual,
                    "eta": wave.eta,
                }
            )
        )
        return report
