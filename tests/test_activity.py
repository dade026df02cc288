from datetime import datetime, timedelta

import pytest

from statsagent.activity import (
    IDLE_IN_TRANSACTION_QUERY,
    PG_WAIT_LOCK,
    PG_WAIT_LWLOCK,
    ActivitySampler,
    Backend,
    BackendState,
)

NOW = datetime(2024, 1, 1, 12, 0, 0)


def ago(seconds):
    return NOW - timedelta(seconds=seconds)


def test_no_samples_gives_none():
    assert ActivitySampler().activity() is None


def test_counts_by_state():
    sampler = ActivitySampler()
    backends = [
        Backend(pid=10, state=BackendState.IDLE),
        Backend(pid=11, state=BackendState.IDLE_IN_TRANSACTION),
        Backend(pid=12, state=BackendState.RUNNING),
        Backend(pid=13, state=BackendState.RUNNING, wait_event_info=PG_WAIT_LOCK | 5),
        Backend(pid=14, state=BackendState.IDLE, wait_event_info=PG_WAIT_LWLOCK),
        Backend(pid=15, state=BackendState.FASTPATH),
    ]
    sampler.sample(backends, NOW, my_pid=999)
    summary = sampler.activity()
    assert summary.idle == 1
    assert summary.idle_in_xact == 1
    assert summary.running == 1
    assert summary.waiting == 2
    assert summary.max_backends == len(backends)


def test_activity_resets_after_read():
    sampler = ActivitySampler()
    sampler.sample([Backend(pid=10, state=BackendState.IDLE)], NOW, my_pid=1)
    assert sampler.activity() is not None
    assert sampler.activity() is None
    assert sampler.samples == 0


def test_skips_own_dead_zero_and_non_client():
    sampler = ActivitySampler()
    backends = [
        Backend(pid=0, state=BackendState.IDLE),
        Backend(pid=7, state=BackendState.IDLE),
        Backend(pid=8, state=BackendState.IDLE, alive=False),
        Backend(pid=9, state=BackendState.IDLE, backend_type="autovacuum worker"),
        Backend(pid=10, state=BackendState.IDLE),
    ]
    sampler.sample(backends, NOW, my_pid=7)
    summary = sampler.activity()
    assert summary.idle == 1
    assert summary.max_backends == 1


def test_counts_accumulate_and_max_is_kept():
    sampler = ActivitySampler()
    first = [Backend(pid=p, state=BackendState.RUNNING) for p in (10, 11, 12)]
    second = [Backend(pid=10, state=BackendState.RUNNING)]
    sampler.sample(first, NOW, my_pid=1)
    sampler.sample(second, NOW, my_pid=1)
    summary = sampler.activity()
    assert summary.running == len(first) + len(second)
    assert summary.max_backends == len(first)


def test_long_transaction_recorded_with_query_and_client():
    sampler = ActivitySampler()
    start = ago(5)
    backend = Backend(
        pid=42,
        state=BackendState.RUNNING,
        xact_start=start,
        query="SELECT pg_sleep(10)",
        client_addr="192.0.2.1",
    )
    sampler.sample([backend], NOW, my_pid=1)
    rows = sampler.long_transactions()
    assert len(rows) == 1
    row = rows[0]
    assert row.pid == 42
    assert row.start == start
    assert row.duration == pytest.approx(5.0)
    assert row.query == "SELECT pg_sleep(10)"
    assert row.client == "192.0.2.1"


def test_long_transactions_cleared_after_read():
    sampler = ActivitySampler()
    sampler.sample(
        [Backend(pid=42, state=BackendState.RUNNING, xact_start=ago(3))], NOW, my_pid=1
    )
    assert len(sampler.long_transactions()) == 1
    assert sampler.long_transactions() == []


def test_short_and_vacuum_and_no_xact_are_ignored():
    sampler = ActivitySampler()
    backends = [
        Backend(pid=1, state=BackendState.RUNNING, xact_start=ago(0.5)),
        Backend(pid=2, state=BackendState.RUNNING, xact_start=ago(10), in_vacuum=True),
        Backend(pid=3, state=BackendState.RUNNING),
    ]
    sampler.sample(backends, NOW, my_pid=99)
    assert sampler.long_transactions() == []


def test_own_backend_can_be_long_transaction():
    sampler = ActivitySampler()
    sampler.sample(
        [Backend(pid=5, state=BackendState.RUNNING, xact_start=ago(2), query="q")],
        NOW,
        my_pid=5,
    )
    rows = sampler.long_transactions()
    assert [r.pid for r in rows] == [5]
    assert sampler.activity().max_backends == 0


def test_idle_in_transaction_query_text_and_missing_client():
    sampler = ActivitySampler()
    sampler.sample(
        [Backend(pid=6, state=BackendState.IDLE_IN_TRANSACTION, xact_start=ago(2), query="x")],
        NOW,
        my_pid=1,
    )
    row = sampler.long_transactions()[0]
    assert row.query == IDLE_IN_TRANSACTION_QUERY
    assert row.client is None


def test_same_transaction_updated_across_samples():
    sampler = ActivitySampler()
    start = ago(2)
    sampler.sample(
        [Backend(pid=6, state=BackendState.RUNNING, xact_start=start, query="a")], NOW, my_pid=1
    )
    later = NOW + timedelta(seconds=3)
    sampler.sample(
        [Backend(pid=6, state=BackendState.RUNNING, xact_start=start, query="b")], later, my_pid=1
    )
    rows = sampler.long_transactions()
    assert len(rows) == 1
    assert rows[0].query == "b"
    assert rows[0].duration == pytest.approx((later - start).total_seconds())


def test_only_longest_transactions_kept():
    sampler = ActivitySampler(long_transaction_max=2)
    backends = [
        Backend(pid=p, state=BackendState.RUNNING, xact_start=ago(p)) for p in (2, 5, 3, 9)
    ]
    sampler.sample(backends, NOW, my_pid=1)
    rows = sampler.long_transactions()
    assert sorted(r.pid for r in rows) == [5, 9]


def test_query_is_clipped():
    sampler = ActivitySampler(query_size=5)
    sampler.sample(
        [Backend(pid=6, state=BackendState.RUNNING, xact_start=ago(2), query="SELECT 1")],
        NOW,
        my_pid=1,
    )
    assert sampler.long_transactions()[0].query == "SELECT 1"[:4]


def test_invalid_limits_raise():
    with pytest.raises(ValueError):
        ActivitySampler(long_transaction_max=0)
    with pytest.raises(ValueError):
        ActivitySampler(query_size=0)