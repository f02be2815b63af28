from __future__ import annotations

import math
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Deque


@dataclass(frozen=True)
class ProviderCallSample:
    ts: float
    provider: str
    credential_id: str
    latency_ms: float
    success: bool


_provider_samples: Deque[ProviderCallSample] = deque(maxlen=10000)
_counters: dict[str, int] = defaultdict(int)


def record_provider_call(*, provider: str, credential_id: str, latency_ms: float, success: bool) -> None:
    # Keep per-credential outcomes so operators can see which key is degrading.
    _provider_samples.append(
        ProviderCallSample(
            ts=time.time(),
            provider=provider,
            credential_id=credential_id,
            latency_ms=latency_ms,
            success=success,
        )
    )


def increment_counter(name: str, value: int = 1) -> None:
    _counters[name] += value


def provider_latency(window_s: int) -> dict[str, dict[str, float | int | None]]:
    # Summarize p95/max latency and failure totals per provider in the window.
    cutoff = time.time() - window_s
    latencies: dict[str, list[float]] = defaultdict(list)
    failures: dict[str, int] = defaultdict(int)
    for sample in _provider_samples:
        if sample.ts < cutoff:
            continue
        latencies[sample.provider].append(sample.latency_ms)
        if not sample.success:
            failures[sample.provider] += 1
    result: dict[str, dict[str, float | int | None]] = {}
    for provider, values in latencies.items():
        values.sort()
        p95_idx = max(0, math.ceil(0.95 * len(values)) - 1)
        result[provider] = {
            "p95": values[p95_idx],
            "max": values[-1],
            "calls": len(values),
            "failures": failures[provider],
        }
    return result


def counters_snapshot() -> dict[str, int]:
    return dict(_counters)


def reset_telemetry() -> None:
    # Tests reset module state between cases.
    _provider_samples.clear()
    _counters.clear()
