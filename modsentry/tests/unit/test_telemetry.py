from __future__ import annotations

from modsentry.services import telemetry


def test_provider_latency_summarizes_window() -> None:
    for latency in (10.0, 20.0, 30.0):
        telemetry.record_provider_call(provider="groq", credential_id="a", latency_ms=latency, success=True)
    telemetry.record_provider_call(provider="groq", credential_id="b", latency_ms=500.0, success=False)

    summary = telemetry.provider_latency(60)["groq"]

    assert summary["calls"] == 4
    assert summary["failures"] == 1
    assert summary["max"] == 500.0
    assert summary["p95"] == 500.0


def test_counters_accumulate_until_reset() -> None:
    telemetry.increment_counter("credential_deactivated_total")
    telemetry.increment_counter("credential_deactivated_total", 2)
    assert telemetry.counters_snapshot()["credential_deactivated_total"] == 3
    telemetry.reset_telemetry()
    assert telemetry.counters_snapshot() == {}
