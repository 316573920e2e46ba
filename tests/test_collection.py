import psycopg2
from sqlalchemy import select

from dbmonitor.errors import TargetConnectionError
from dbmonitor.identity import QueryIdentity
from dbmonitor.models.tables import QueryRecord, TableUsage
from dbmonitor.tasks.collection import collect_all, collect_target

from fakes import stat_row, stats_connection


def _records(session, target_id):
    return list(session.scalars(select(QueryRecord).where(QueryRecord.target_id == target_id)))


class TestCollectTarget:
    """Mirroring pg_stat_statements into QueryRecords."""

    def test_creates_records_with_alerts_disabled(self, session, make_target, cache, connector):
        t = make_target()
        connector.register(t.id, stats_connection([stat_row("SELECT * FROM orders WHERE id = $1", calls=4, mean=12.5)]))
        summary = collect_target(session, t, cache=cache, connect=connector)
        assert summary["created"] == 1
        (rec,) = _records(session, t.id)
        assert rec.query_hash == QueryIdentity.of("SELECT * FROM orders WHERE id = $1").digest
        assert rec.alerts_enabled is False
        assert rec.statement_type == "SELECT"
        assert rec.table_name == "orders"
        assert rec.calls == 4 and rec.mean_time_ms == 12.5

    def test_second_poll_overwrites_with_latest_values(self, session, make_target, cache, connector):
        t = make_target()
        q = "UPDATE accounts SET balance = $1 WHERE id = $2"
        connector.register(t.id, stats_connection([stat_row(q, calls=10, total=50.0, mean=5.0, rows=10)]))
        collect_target(session, t, cache=cache, connect=connector)
        connector.register(t.id, stats_connection([stat_row(q, calls=25, total=200.0, mean=8.0, max_=40.0, rows=25)]))
        collect_target(session, t, cache=cache, connect=connector)
        (rec,) = _records(session, t.id)
        assert (rec.calls, rec.total_time_ms, rec.mean_time_ms, rec.max_time_ms, rec.rows_returned) == (25, 200.0, 8.0, 40.0, 25)

    def test_identical_polls_are_idempotent(self, session, make_target, cache, connector):
        t = make_target()
        rows = [stat_row("SELECT 1 FROM a"), stat_row("SELECT 2 FROM b", calls=3)]
        connector.register(t.id, stats_connection(rows))
        collect_target(session, t, cache=cache, connect=connector)
        first = {(r.query_hash, r.calls, r.mean_time_ms) for r in _records(session, t.id)}
        second_summary = collect_target(session, t, cache=cache, connect=connector)
        assert second_summary["created"] == 0 and second_summary["updated"] == 2
        assert {(r.query_hash, r.calls, r.mean_time_ms) for r in _records(session, t.id)} == first

    def test_whitespace_variants_share_one_record(self, session, make_target, cache, connector):
        t = make_target()
        connector.register(t.id, stats_connection([stat_row("SELECT *  FROM t"), stat_row("SELECT * FROM t;", calls=99)]))
        collect_target(session, t, cache=cache, connect=connector)
        (rec,) = _records(session, t.id)
        assert rec.calls == 99

    def test_bad_row_is_skipped(self, session, make_target, cache, connector):
        t = make_target()
        bad = stat_row("SELECT 1 FROM x")
        bad["calls"] = "lots"
        connector.register(t.id, stats_connection([bad, stat_row(""), stat_row("SELECT 2 FROM y")]))
        summary = collect_target(session, t, cache=cache, connect=connector)
        assert summary["created"] == 1
        assert len(summary["errors"]) == 2
        assert [r.table_name for r in _records(session, t.id)] == ["y"]

    def test_write_invalidates_context_cache(self, session, make_target, cache, connector):
        t = make_target()
        cache.set(t.id, {"narrative": "stale"})
        connector.register(t.id, stats_connection([stat_row("SELECT 1 FROM a")]))
        collect_target(session, t, cache=cache, connect=connector)
        assert cache.get(t.id) is None

    def test_table_usage_sums_calls_per_table(self, session, make_target, cache, connector):
        t = make_target()
        connector.register(t.id, stats_connection([
            stat_row("SELECT * FROM orders WHERE id = $1", calls=5),
            stat_row("SELECT count(*) FROM orders", calls=7),
            stat_row("INSERT INTO events (a) VALUES ($1)", calls=2),
        ]))
        collect_target(session, t, cache=cache, connect=connector)
        usage = {u.table_name: u.call_count for u in session.scalars(select(TableUsage))}
        assert usage == {"orders": 12, "events": 2}

    def test_connection_is_closed(self, session, make_target, cache, connector):
        t = make_target()
        conn = connector.register(t.id, stats_connection([]))
        collect_target(session, t, cache=cache, connect=connector)
        assert conn.closed and connector.opened == connector.closed == 1


class TestCollectAll:
    def test_failed_target_does_not_block_others(self, session, make_target, cache, connector):
        down = make_target(database_name="down")
        up = make_target(database_name="up")
        connector.register(down.id, TargetConnectionError(down.id, "timeout expired"))
        connector.register(up.id, stats_connection([stat_row("SELECT 1 FROM a")]))
        result = collect_all(session, cache=cache, connect=connector)
        assert result["targets"] == 1
        assert result["errors"][0]["target_id"] == down.id
        assert len(_records(session, up.id)) == 1

    def test_statistics_query_failure_is_isolated(self, session, make_target, cache, connector):
        broken = make_target(database_name="broken")
        ok = make_target(database_name="ok")
        from fakes import FakeConnection
        from dbmonitor import statements
        connector.register(broken.id, FakeConnection({statements.TOP_STATEMENTS: psycopg2.ProgrammingError("relation \"pg_stat_statements\" does not exist")}))
        connector.register(ok.id, stats_connection([stat_row("SELECT 1 FROM a")]))
        result = collect_all(session, cache=cache, connect=connector)
        assert [e["target_id"] for e in result["errors"]] == [broken.id]
        assert len(_records(session, ok.id)) == 1

    def test_only_monitoring_enabled_targets_are_polled(self, session, make_target, cache, connector):
        make_target(database_name="off", monitoring_enabled=False)
        on = make_target(database_name="on")
        connector.register(on.id, stats_connection([]))
        result = collect_all(session, cache=cache, connect=connector)
        assert [r["target_id"] for r in result["results"]] == [on.id]
        assert connector.opened == 1

    def test_requests_configured_limit(self, session, make_target, cache, connector):
        t = make_target()
        conn = connector.register(t.id, stats_connection([]))
        collect_all(session, cache=cache, connect=connector)
        assert conn.executed[0][1] == {"limit": 50}
