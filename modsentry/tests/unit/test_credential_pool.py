from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from modsentry.core.errors import CredentialNotFound, CredentialStateError, NoCredentialAvailable
from modsentry.domain.events import (
    CATEGORY_CREDENTIAL_CREATED,
    CATEGORY_CREDENTIAL_DEACTIVATED,
    CATEGORY_CREDENTIAL_REACTIVATED,
    CATEGORY_CREDENTIAL_REMOVED,
    SEVERITY_WARN,
)
from modsentry.services.telemetry import counters_snapshot
from modsentry.tests.utils.stack import (
    build_stack,
    fetch_credential,
    fetch_events,
    seed_credential,
    set_credential_fields,
)


@pytest.mark.asyncio
async def test_acquire_on_empty_pool_raises() -> None:
    stack = build_stack()
    with pytest.raises(NoCredentialAvailable):
        await stack.pool.acquire()
    assert counters_snapshot()["credential_pool_exhausted_total"] == 1


@pytest.mark.asyncio
async def test_acquire_prefers_lowest_failure_count() -> None:
    # A key four failures from the edge loses to a clean key regardless of recency.
    stack = build_stack()
    a = await seed_credential(stack.pool, "a")
    b = await seed_credential(stack.pool, "b")
    await set_credential_fields(a.id, failure_count=4, last_used_at=None)
    await set_credential_fields(b.id, last_used_at=datetime(2026, 6, 1, tzinfo=timezone.utc))

    handle = await stack.pool.acquire()

    assert handle.id == b.id


@pytest.mark.asyncio
async def test_acquire_breaks_ties_by_least_recent_use() -> None:
    stack = build_stack()
    a = await seed_credential(stack.pool, "a")
    b = await seed_credential(stack.pool, "b")

    await stack.pool.report_success(a.id)
    # Never-used keys rank ahead of used ones.
    assert (await stack.pool.acquire()).id == b.id

    await stack.pool.report_success(b.id)
    assert (await stack.pool.acquire()).id == a.id


@pytest.mark.asyncio
async def test_acquire_skips_inactive_and_removed() -> None:
    stack = build_stack()
    a = await seed_credential(stack.pool, "a")
    b = await seed_credential(stack.pool, "b")
    await stack.pool.deactivate(a.id, actor_ref="admin-1")
    assert (await stack.pool.acquire()).id == b.id

    await stack.pool.deactivate(b.id, actor_ref="admin-1")
    await stack.pool.remove(b.id, actor_ref="admin-1")
    with pytest.raises(NoCredentialAvailable):
        await stack.pool.acquire()


@pytest.mark.asyncio
async def test_handle_repr_hides_ciphertext() -> None:
    stack = build_stack()
    await seed_credential(stack.pool, "a", secret="sk-live-123")
    handle = await stack.pool.acquire()
    assert "secret_ciphertext" not in repr(handle)
    assert "sk-live-123" not in handle.secret_ciphertext


@pytest.mark.asyncio
async def test_report_success_resets_failures_and_stamps_use() -> None:
    stack = build_stack()
    a = await seed_credential(stack.pool, "a")
    await set_credential_fields(a.id, failure_count=3)

    await stack.pool.report_success(a.id)

    row = await fetch_credential(a.id)
    assert row.failure_count == 0
    assert row.last_used_at is not None


@pytest.mark.asyncio
async def test_fifth_failure_deactivates_and_audits_once() -> None:
    stack = build_stack(failure_threshold=5)
    a = await seed_credential(stack.pool, "a")
    await set_credential_fields(a.id, failure_count=4)

    count = await stack.pool.report_failure(a.id)

    assert count == 5
    row = await fetch_credential(a.id)
    assert row.active is False
    assert row.deactivated_at is not None
    events = await fetch_events(category=CATEGORY_CREDENTIAL_DEACTIVATED)
    assert len(events) == 1
    assert events[0].severity == SEVERITY_WARN
    assert events[0].actor_ref is None
    assert events[0].metadata_json["reason"] == "failure_threshold"
    assert events[0].metadata_json["failure_count"] == 5


@pytest.mark.asyncio
async def test_failures_below_threshold_keep_credential_active() -> None:
    stack = build_stack(failure_threshold=5)
    a = await seed_credential(stack.pool, "a")
    for expected in range(1, 5):
        assert await stack.pool.report_failure(a.id) == expected
    row = await fetch_credential(a.id)
    assert row.active is True
    assert await fetch_events(category=CATEGORY_CREDENTIAL_DEACTIVATED) == []


@pytest.mark.asyncio
async def test_deactivation_is_sticky_until_reactivated() -> None:
    stack = build_stack(failure_threshold=2)
    a = await seed_credential(stack.pool, "a")
    await stack.pool.report_failure(a.id)
    await stack.pool.report_failure(a.id)

    # A late success report must not put the key back into rotation.
    await stack.pool.report_success(a.id)
    assert (await fetch_credential(a.id)).active is False
    with pytest.raises(NoCredentialAvailable):
        await stack.pool.acquire()

    view = await stack.pool.reactivate(a.id, actor_ref="admin-1")
    assert view.active is True
    assert view.failure_count == 0
    assert (await stack.pool.acquire()).id == a.id
    events = await fetch_events(category=CATEGORY_CREDENTIAL_REACTIVATED)
    assert [event.actor_ref for event in events] == ["admin-1"]


@pytest.mark.asyncio
async def test_concurrent_failures_are_not_lost() -> None:
    stack = build_stack(failure_threshold=5)
    a = await seed_credential(stack.pool, "a")

    counts = await asyncio.gather(*(stack.pool.report_failure(a.id) for _ in range(5)))

    assert sorted(counts) == [1, 2, 3, 4, 5]
    row = await fetch_credential(a.id)
    assert row.failure_count == 5
    assert row.active is False
    assert len(await fetch_events(category=CATEGORY_CREDENTIAL_DEACTIVATED)) == 1


@pytest.mark.asyncio
async def test_report_failure_for_unknown_credential_is_noop() -> None:
    stack = build_stack()
    assert await stack.pool.report_failure("missing") == 0


@pytest.mark.asyncio
async def test_add_credential_encrypts_and_audits_without_secret() -> None:
    stack = build_stack()
    view = await stack.pool.add_credential(name=" primary ", secret="sk-plain", actor_ref="admin-1")

    row = await fetch_credential(view.id)
    assert row.name == "primary"
    assert row.secret_ciphertext != "sk-plain"
    events = await fetch_events(category=CATEGORY_CREDENTIAL_CREATED)
    assert len(events) == 1
    assert "sk-plain" not in str(events[0].metadata_json)


@pytest.mark.asyncio
async def test_duplicate_name_is_rejected() -> None:
    stack = build_stack()
    await seed_credential(stack.pool, "a")
    with pytest.raises(CredentialStateError):
        await seed_credential(stack.pool, "a")


@pytest.mark.asyncio
async def test_remove_requires_deactivation_first() -> None:
    stack = build_stack()
    a = await seed_credential(stack.pool, "a")
    with pytest.raises(CredentialStateError):
        await stack.pool.remove(a.id, actor_ref="admin-1")

    await stack.pool.deactivate(a.id, actor_ref="admin-1")
    removed = await stack.pool.remove(a.id, actor_ref="admin-1")

    assert removed.removed_at is not None
    with pytest.raises(CredentialNotFound):
        await stack.pool.get(a.id)
    assert await stack.pool.list_credentials() == []
    assert len(await stack.pool.list_credentials(include_removed=True)) == 1
    assert len(await fetch_events(category=CATEGORY_CREDENTIAL_REMOVED)) == 1


@pytest.mark.asyncio
async def test_stats_counts_each_status() -> None:
    stack = build_stack()
    a = await seed_credential(stack.pool, "a")
    b = await seed_credential(stack.pool, "b")
    await seed_credential(stack.pool, "c")
    await stack.pool.deactivate(a.id, actor_ref="admin-1")
    await stack.pool.deactivate(b.id, actor_ref="admin-1")
    await stack.pool.remove(b.id, actor_ref="admin-1")

    assert await stack.pool.stats() == {"active": 1, "inactive": 1, "removed": 1}


@pytest.mark.asyncio
async def test_manual_deactivation_is_idempotent() -> None:
    stack = build_stack()
    a = await seed_credential(stack.pool, "a")
    await stack.pool.deactivate(a.id, actor_ref="admin-1")
    await stack.pool.deactivate(a.id, actor_ref="admin-1")

    events = await fetch_events(category=CATEGORY_CREDENTIAL_DEACTIVATED)
    assert len(events) == 1
    assert events[0].metadata_json["reason"] == "manual"
