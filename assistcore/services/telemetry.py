from __future__ import annotations

from collections import Counter, deque
from dataclasses import dataclass
import math
import time
from typing import Deque, Iterable


@dataclass(frozen=True)
class _Sample:
    ts: float
    key: str
    latency_ms: float
    ok: bool


# Bounded rolling windows; the oldest samples fall off first.
_requests: Deque[_Sample] = deque(maxlen=20000)
_external_calls: Deque[_Sample] = deque(maxlen=10000)
_counters: Counter[str] = Counter()


def record_request(*, path: str, status_code: int, latency_ms: float) -> None:
    _requests.append(_Sample(ts=time.time(), key=path, latency_ms=latency_ms, ok=status_code < 500))


def record_external_call(*, integration: str, latency_ms: float, success: bool) -> None:
    # One sample per embedding or reasoning round trip.
    _external_calls.append(_Sample(ts=time.time(), key=integration, latency_ms=latency_ms, ok=success))


def increment_counter(name: str, value: int = 1) -> None:
    # Gate outcomes: quota.denied, quota.fail_open, entitlements.denied.<feature>, ...
    _counters[name] += value


def _p95(latencies: list[float]) -> float | None:
    if not latencies:
        return None
    ordered = sorted(latencies)
    return ordered[max(0, math.ceil(0.95 * len(ordered)) - 1)]


def _recent(samples: Iterable[_Sample], window_s: int) -> list[_Sample]:
    cutoff = time.time() - window_s
    return [sample for sample in samples if sample.ts >= cutoff]


def external_call_stats(window_s: int) -> dict[str, dict[str, float | int | None]]:
    grouped: dict[str, list[_Sample]] = {}
    for sample in _recent(_external_calls, window_s):
        grouped.setdefault(sample.key, []).append(sample)
    return {
        integration: {
            "calls": len(samples),
            "failures": sum(1 for sample in samples if not sample.ok),
            "p95": _p95([sample.latency_ms for sample in samples]),
            "max": max(sample.latency_ms for sample in samples),
        }
        for integration, samples in grouped.items()
    }


def request_stats(window_s: int) -> dict[str, float | int | None]:
    samples = _recent(_requests, window_s)
    return {
        "requests": len(samples),
        "errors": sum(1 for sample in samples if not sample.ok),
        "p95": _p95([sample.latency_ms for sample in samples]),
    }


def counters_snapshot() -> dict[str, int]:
    return dict(_counters)


def reset_telemetry() -> None:
    _requests.clear()
    _external_calls.clear()
    _counters.clear()
