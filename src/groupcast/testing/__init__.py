"""Test-only utilities for deterministic collector, poller, and dispatch assertions."""

from .time_control import SleepRecorder, fixed_now, sequenced_now, stepping_now

__all__ = [
    "SleepRecorder",
    "fixed_now",
    "sequenced_now",
    "stepping_now",
]
