from __future__ import annotations

import pytest

from processes.optimizer.eta import (
    compute_eta,
    dispatch_end_time,
    natural_duration,
    round_up,
    start_delay,
    wait_time,
)
from processes.optimizer.types import WaveKind

hypothesis = pytest.importorskip("hypothesis")
from hypothesis import given  # noqa: E402
from hypothesis import strategies as st  # noqa: E402


class TestRounding:
    """ETAs land on 100 ms boundaries."""

    def test_rounds_up_to_next_boundary(self) -> None:
        assert round_up(4060) == 4100
        assert round_up(4001) == 4100

    def test_aligned_value_is_unchanged(self) -> None:
        assert round_up(4100) == 4100
        assert round_up(0) == 0

    @given(st.integers(min_value=0, max_value=10**9))
    def test_round_up_properties(self, ts: int) -> None:
        r = round_up(ts)
        assert r >= ts
        assert r - ts < 100
        assert r % 100 == 0
        assert round_up(r) == r


def test_natural_duration_uses_kind_multiplier() -> None:
    assert natural_duration(1000, WaveKind.WEAKEN) == 4000
    assert natural_duration(1000, WaveKind.GROW) == 3200


def test_weaken_eta_includes_margin_and_buffer() -> None:
    # 0 + 4000 + 40 + 20 = 4060 -> 4100
    assert compute_eta(0, 1000, WaveKind.WEAKEN) == 4100
    assert compute_eta(12345, 1000, WaveKind.WEAKEN) == round_up(12345 + 4060)


def test_grow_eta_includes_margin_and_buffer() -> None:
    # 0 + 3200 + 60 + 20 = 3280 -> 3300
    assert compute_eta(0, 1000, WaveKind.GROW) == 3300


def test_workers_are_told_to_finish_before_the_eta() -> None:
    assert dispatch_end_time(4100, WaveKind.WEAKEN) == 4060
    assert dispatch_end_time(3300, WaveKind.GROW) == 3240


def test_start_delay_aligns_to_end_time() -> None:
    assert start_delay(end_time=4060, now=0, duration=4000) == 60
    assert start_delay(end_time=4060.9, now=0, duration=4000) == 60


def test_late_start_is_clamped_to_zero() -> None:
    assert start_delay(end_time=4060, now=100, duration=4000) == 0


@given(
    st.floats(min_value=0, max_value=1e7, allow_nan=False),
    st.floats(min_value=0, max_value=1e7, allow_nan=False),
    st.floats(min_value=0, max_value=1e6, allow_nan=False),
)
def test_start_delay_never_negative(end_time: float, now: float, duration: float) -> None:
    assert start_delay(end_time, now, duration) >= 0


def test_wait_time_is_never_negative() -> None:
    assert wait_time(4100, 4000) == 100
    assert wait_time(4100, 5000) == 0


def test_sub_millisecond_times_round_to_the_first_boundary() -> None:
    r = round_up(1e-52)
    assert r == 100
    assert r - 1e-52 <= 100
