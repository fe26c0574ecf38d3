"""ETA arithmetic for weaken/grow waves.

The remote execution primitive only accepts an *extra delay* on top of an
operation's natural duration, so every wave is planned against an absolute
completion time and each worker converts it back into its own start delay
when it actually starts.
"""

from __future__ import annotations

import math

from .types import TIMING_BUFFER_MS, WaveKind

ETA_GRANULARITY_MS = 100


def round_up(ts: float, granularity: int = ETA_GRANULARITY_MS) -> float:
    """Round ``ts`` up to the next multiple of ``granularity`` (no-op if aligned)."""
    return float(math.ceil(ts / granularity) * granularity)


def natural_duration(hack_time: float, kind: WaveKind) -> float:
    return hack_time * kind.multiplier


def compute_eta(now: float, hack_time: float, kind: WaveKind) -> float:
    """Absolute time at which a freshly dispatched wave of ``kind`` is polled.

    Adds the kind's margin plus one extra buffer so the threads still have time
    to start before the rounded target.
    """
    eta = now + natural_duration(hack_time, kind) + kind.margin_ms
    return round_up(eta + TIMING_BUFFER_MS)


def dispatch_end_time(eta: float, kind: WaveKind) -> float:
    """Absolute finish time handed to the workers of a wave."""
    return eta - kind.margin_ms


def start_delay(end_time: float, now: float, duration: float) -> int:
    # Late starts are clamped to zero and simply finish late.
    return int(math.floor(max(0.0, end_time - now - duration)))


def wait_time(eta: float, now: float) -> float:
    return max(0.0, eta - now)
