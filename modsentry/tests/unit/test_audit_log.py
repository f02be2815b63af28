from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from modsentry.domain.events import (
    CATEGORY_CREDENTIAL_FAILOVER,
    CATEGORY_MODERATION_STATE_CHANGE,
    CATEGORY_SYSTEM,
)
from modsentry.services.audit import AuditLog, AuditQuery, sanitize_metadata
from modsentry.services.telemetry import counters_snapshot
from modsentry.tests.utils.stack import fetch_events


def test_sanitize_metadata_redacts_nested_secrets() -> None:
    payload = {
        "api_key": "sk-live",
        "nested": {"Authorization": "Bearer abc", "name": "primary"},
        "items": [{"secret_ciphertext": "gAAAA"}, {"count": 2}],
    }

    sanitized = sanitize_metadata(payload)

    assert sanitized["api_key"] == "[REDACTED]"
    assert sanitized["nested"] == {"Authorization": "[REDACTED]", "name": "primary"}
    assert sanitized["items"] == [{"secret_ciphertext": "[REDACTED]"}, {"count": 2}]


@pytest.mark.asyncio
async def test_append_writes_both_sinks(caplog) -> None:
    caplog.set_level(logging.DEBUG, logger="modsentry.audit")
    audit_log = AuditLog()

    event = await audit_log.append(
        category=CATEGORY_SYSTEM,
        message="pool warmed",
        actor_ref="ops-1",
        metadata={"token": "x", "size": 3},
    )

    assert event.id is not None
    persisted = await fetch_events(category=CATEGORY_SYSTEM)
    assert [row.id for row in persisted] == [event.id]
    assert persisted[0].metadata_json == {"token": "[REDACTED]", "size": 3}
    stream = [record.getMessage() for record in caplog.records if record.name == "modsentry.audit"]
    assert any("category=SYSTEM" in line and "actor=ops-1" in line for line in stream)
    assert all('"x"' not in line for line in stream)


@pytest.mark.asyncio
async def test_stream_threshold_filters_only_the_log(caplog) -> None:
    caplog.set_level(logging.DEBUG, logger="modsentry.audit")
    audit_log = AuditLog(min_stream_severity="warn")

    await audit_log.append(category=CATEGORY_SYSTEM, message="quiet", severity="info")
    await audit_log.append(category=CATEGORY_SYSTEM, message="loud", severity="warn")

    stream = [record.getMessage() for record in caplog.records if record.name == "modsentry.audit"]
    assert not any("message=quiet" in line for line in stream)
    assert any("message=loud" in line for line in stream)
    assert len(await fetch_events(category=CATEGORY_SYSTEM)) == 2


@pytest.mark.asyncio
async def test_append_rejects_unknown_category_and_severity() -> None:
    audit_log = AuditLog()
    with pytest.raises(ValueError):
        await audit_log.append(category="made_up", message="x")
    with pytest.raises(ValueError):
        await audit_log.append(category=CATEGORY_SYSTEM, message="x", severity="fatal")


@pytest.mark.asyncio
async def test_persistence_failure_is_logged_not_raised(tmp_path, caplog) -> None:
    # An empty database has no audit table, so every insert fails.
    caplog.set_level(logging.DEBUG, logger="modsentry.audit")
    broken_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/empty.db")
    audit_log = AuditLog(session_factory=async_sessionmaker(broken_engine, expire_on_commit=False))
    try:
        event = await audit_log.append(category=CATEGORY_SYSTEM, message="still recorded")
    finally:
        await broken_engine.dispose()

    assert event.category == CATEGORY_SYSTEM
    assert counters_snapshot()["audit_persist_failures_total"] == 1
    messages = [record.getMessage() for record in caplog.records if record.name == "modsentry.audit"]
    assert any("message=still recorded" in line for line in messages)
    assert any(line.startswith("audit_persist_failed") for line in messages)


@pytest.mark.asyncio
async def test_query_filters_and_orders_newest_first() -> None:
    audit_log = AuditLog()
    base = datetime(2026, 3, 1, tzinfo=timezone.utc)
    await audit_log.append(
        category=CATEGORY_SYSTEM, message="boot", actor_ref="ops-1", occurred_at=base
    )
    await audit_log.append(
        category=CATEGORY_MODERATION_STATE_CHANGE,
        message="Moderation state pending -> approved",
        actor_ref="mod-1",
        resource_type="moderation_record",
        resource_id="r1",
        occurred_at=base + timedelta(minutes=1),
    )
    await audit_log.append(
        category=CATEGORY_CREDENTIAL_FAILOVER,
        message="Provider call failed (100% of retries)",
        severity="warn",
        occurred_at=base + timedelta(minutes=2),
    )

    everything = await audit_log.query()
    assert [event.category for event in everything] == [
        CATEGORY_CREDENTIAL_FAILOVER,
        CATEGORY_MODERATION_STATE_CHANGE,
        CATEGORY_SYSTEM,
    ]
    assert [e.actor_ref for e in await audit_log.query(AuditQuery(actor_ref="mod-1"))] == ["mod-1"]
    assert len(await audit_log.query(AuditQuery(severity="warn"))) == 1
    assert len(await audit_log.query(AuditQuery(resource_type="moderation_record", resource_id="r1"))) == 1
    assert len(await audit_log.query(AuditQuery(text="APPROVED"))) == 1
    # LIKE wildcards in the search text are matched literally.
    assert len(await audit_log.query(AuditQuery(text="100%"))) == 1
    assert await audit_log.query(AuditQuery(text="_")) == []
    window = await audit_log.query(
        AuditQuery(occurred_from=base + timedelta(seconds=30), occurred_to=base + timedelta(seconds=90))
    )
    assert [event.category for event in window] == [CATEGORY_MODERATION_STATE_CHANGE]
    page = await audit_log.query(AuditQuery(offset=1, limit=1))
    assert [event.category for event in page] == [CATEGORY_MODERATION_STATE_CHANGE]


@pytest.mark.asyncio
async def test_time_range_bounds_with_offsets_compare_in_utc() -> None:
    audit_log = AuditLog()
    plus_two = timezone(timedelta(hours=2))
    await audit_log.append(
        category=CATEGORY_SYSTEM,
        message="noon",
        occurred_at=datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc),
    )
    # 14:30+02:00 is 12:30Z, stored and compared as UTC.
    await audit_log.append(
        category=CATEGORY_SYSTEM,
        message="half past",
        occurred_at=datetime(2026, 3, 1, 14, 30, tzinfo=plus_two),
    )

    # 13:30+02:00 is 11:30Z and 14:15+02:00 is 12:15Z.
    window = await audit_log.query(
        AuditQuery(
            occurred_from=datetime(2026, 3, 1, 13, 30, tzinfo=plus_two),
            occurred_to=datetime(2026, 3, 1, 14, 15, tzinfo=plus_two),
        )
    )
    assert [event.message for event in window] == ["noon"]

    # Naive bounds are read as UTC.
    later = await audit_log.query(AuditQuery(occurred_from=datetime(2026, 3, 1, 12, 20)))
    assert [event.message for event in later] == ["half past"]
