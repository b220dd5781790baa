"""Tests for bounded polling."""

import pytest

from vs_demo.exceptions import DependencyUnavailableError, PollTimeout
from vs_demo.polling import poll_until, wait_ready

from fakes import FakeClock


def probe_sequence(*results):
    calls = []
    values = list(results)

    def probe():
        calls.append(1)
        return values.pop(0)
    return probe, calls


def test_returns_first_ready_result():
    clock = FakeClock()
    probe, calls = probe_sequence(None, False, "https://abc.ngrok-free.app")
    assert poll_until(probe, 1.0, 5, "tunnel", clock) == "https://abc.ngrok-free.app"
    assert len(calls) == 3
    assert clock.sleeps == [1.0, 1.0]


def test_zero_is_a_result():
    probe, _ = probe_sequence(0)
    assert poll_until(probe, 1.0, 3, sleep=FakeClock()) == 0


def test_exhaustion_raises_without_trailing_sleep():
    clock = FakeClock()
    probe, calls = probe_sequence(*[None] * 8)
    with pytest.raises(PollTimeout) as exc:
        poll_until(probe, 3.0, 8, "permission 7", clock)
    assert len(calls) == 8
    assert clock.sleeps == [3.0] * 7
    assert exc.value.attempts == 8
    assert "permission 7" in str(exc.value)
    assert isinstance(exc.value, DependencyUnavailableError)


def test_invalid_attempts():
    with pytest.raises(ValueError):
        poll_until(lambda: True, 1.0, 0)


def test_wait_ready():
    clock = FakeClock()
    probe, _ = probe_sequence(False, True)
    assert wait_ready(probe, 2.0, 30, "agent", clock) is True
    assert clock.sleeps == [2.0]

    probe, _ = probe_sequence(False, False, False)
    assert wait_ready(probe, 2.0, 3, "agent", clock) is False
