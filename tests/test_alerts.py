from sqlalchemy import select

from dbmonitor.config import Settings
from dbmonitor.errors import TargetConnectionError
from dbmonitor.context import get_or_build_context
from dbmonitor.identity import QueryIdentity
from dbmonitor.models.tables import CriticalQueryEvent, QueryRecord
from dbmonitor.notifications import AlertNotifier
from dbmonitor.tasks.alerts import detect_all
from dbmonitor.watchlist import disable_query_alert, enable_query_alert, list_alert_queries

from fakes import RecordingNotifier, stat_row, stats_connection

SLOW = "SELECT * FROM orders WHERE customer_id = $1"


def _events(session):
    return list(session.scalars(select(CriticalQueryEvent).order_by(CriticalQueryEvent.id)))


class TestAlertDetection:
    def test_breach_appends_one_event_and_dispatches_once(self, session, make_target, cache, connector):
        t = make_target()
        enable_query_alert(session, t.id, SLOW, cache=cache)
        connector.register(t.id, stats_connection([stat_row(SLOW, calls=3, mean=600.0, total=1800.0)]))
        notifier = RecordingNotifier()
        detect_all(session, cache=cache, notifier=notifier, connect=connector)
        (ev,) = _events(session)
        assert (ev.mean_time_ms, ev.rank, ev.calls) == (600.0, 1, 3)
        assert len(notifier.calls) == 1
        batch, info = notifier.calls[0]
        assert [e["query"] for e in batch] == [SLOW]
        assert info["host"] == t.host and info["database_name"] == t.database_name

    def test_no_breach_no_dispatch(self, session, make_target, cache, connector):
        t = make_target()
        enable_query_alert(session, t.id, SLOW, cache=cache)
        connector.register(t.id, stats_connection([stat_row(SLOW, mean=499.9)]))
        notifier = RecordingNotifier()
        detect_all(session, cache=cache, notifier=notifier, connect=connector)
        assert _events(session) == []
        assert notifier.calls == []

    def test_unwatched_queries_never_alert(self, session, make_target, cache, connector):
        t = make_target()
        session.add(QueryRecord(target_id=t.id, query_text=SLOW, query_hash=QueryIdentity.of(SLOW).digest, alerts_enabled=False))
        session.commit()
        enable_query_alert(session, t.id, "SELECT 1 FROM watched", cache=cache)
        connector.register(t.id, stats_connection([stat_row(SLOW, mean=9000.0), stat_row("SELECT 1 FROM other", mean=9000.0)]))
        notifier = RecordingNotifier()
        detect_all(session, cache=cache, notifier=notifier, connect=connector)
        assert _events(session) == []
        assert notifier.calls == []

    def test_targets_without_watched_queries_are_not_polled(self, session, make_target, cache, connector):
        make_target()
        detect_all(session, cache=cache, notifier=RecordingNotifier(), connect=connector)
        assert connector.opened == 0

    def test_operator_text_matches_despite_whitespace(self, session, make_target, cache, connector):
        t = make_target()
        enable_query_alert(session, t.id, "SELECT *\n  FROM orders\n WHERE customer_id = $1;", cache=cache)
        connector.register(t.id, stats_connection([stat_row(SLOW, mean=700.0)]))
        notifier = RecordingNotifier()
        detect_all(session, cache=cache, notifier=notifier, connect=connector)
        assert len(_events(session)) == 1

    def test_ranks_follow_poll_order_and_metrics_update(self, session, make_target, cache, connector):
        t = make_target()
        a, b, c = "SELECT 1 FROM a", "SELECT 1 FROM b", "SELECT 1 FROM c"
        for q in (a, b, c):
            enable_query_alert(session, t.id, q, cache=cache)
        connector.register(t.id, stats_connection([
            stat_row(a, mean=900.0, calls=2),
            stat_row(b, mean=100.0, calls=50),
            stat_row(c, mean=550.0, calls=7),
        ]))
        notifier = RecordingNotifier()
        detect_all(session, cache=cache, notifier=notifier, connect=connector)
        assert [(e.query_text, e.rank) for e in _events(session)] == [(a, 1), (c, 2)]
        assert len(notifier.calls[0][0]) == 2
        rec_b = session.scalars(select(QueryRecord).where(QueryRecord.query_text == b)).one()
        assert rec_b.calls == 50 and rec_b.mean_time_ms == 100.0

    def test_every_breaching_poll_notifies(self, session, make_target, cache, connector):
        t = make_target()
        enable_query_alert(session, t.id, SLOW, cache=cache)
        connector.register(t.id, stats_connection([stat_row(SLOW, mean=800.0)]))
        notifier = RecordingNotifier()
        detect_all(session, cache=cache, notifier=notifier, connect=connector)
        detect_all(session, cache=cache, notifier=notifier, connect=connector)
        assert len(notifier.calls) == 2
        assert len(_events(session)) == 2

    def test_dispatch_failure_keeps_events_and_metrics(self, session, make_target, cache, connector):
        t = make_target()
        enable_query_alert(session, t.id, SLOW, cache=cache)
        connector.register(t.id, stats_connection([stat_row(SLOW, mean=800.0, calls=11)]))
        result = detect_all(session, cache=cache, notifier=RecordingNotifier(raises=RuntimeError("smtp down")), connect=connector)
        assert result["results"][0]["dispatch"]["status"] == "error"
        assert len(_events(session)) == 1
        assert session.scalars(select(QueryRecord)).one().calls == 11

    def test_matched_poll_invalidates_cache(self, session, make_target, cache, connector):
        t = make_target()
        enable_query_alert(session, t.id, SLOW, cache=cache)
        cache.set(t.id, {"narrative": "stale"})
        connector.register(t.id, stats_connection([stat_row(SLOW, mean=10.0)]))
        detect_all(session, cache=cache, notifier=RecordingNotifier(), connect=connector)
        assert cache.get(t.id) is None

    def test_failed_target_isolated(self, session, make_target, cache, connector):
        down = make_target(database_name="down")
        up = make_target(database_name="up")
        enable_query_alert(session, down.id, SLOW, cache=cache)
        enable_query_alert(session, up.id, SLOW, cache=cache)
        connector.register(down.id, TargetConnectionError(down.id, "refused"))
        connector.register(up.id, stats_connection([stat_row(SLOW, mean=800.0)]))
        notifier = RecordingNotifier()
        result = detect_all(session, cache=cache, notifier=notifier, connect=connector)
        assert [e["target_id"] for e in result["errors"]] == [down.id]
        assert len(notifier.calls) == 1

    def test_alerts_ignore_monitoring_flag(self, session, make_target, cache, connector):
        t = make_target(monitoring_enabled=False)
        enable_query_alert(session, t.id, SLOW, cache=cache)
        connector.register(t.id, stats_connection([stat_row(SLOW, mean=800.0)]))
        detect_all(session, cache=cache, notifier=RecordingNotifier(), connect=connector)
        assert len(_events(session)) == 1


class TestWatchlist:
    def test_enable_creates_zeroed_record(self, session, make_target, cache):
        t = make_target()
        rec, created = enable_query_alert(session, t.id, "DELETE FROM sessions WHERE expires_at < now()", cache=cache)
        assert created and rec.alerts_enabled
        assert (rec.calls, rec.mean_time_ms, rec.statement_type, rec.table_name) == (0, 0.0, "DELETE", "sessions")

    def test_enable_flags_existing_record(self, session, make_target, cache):
        t = make_target()
        first, _ = enable_query_alert(session, t.id, SLOW, cache=cache)
        again, created = enable_query_alert(session, t.id, SLOW + " ;", cache=cache)
        assert not created and again.id == first.id

    def test_listing_carries_category(self, session, make_target, cache):
        t = make_target()
        rec, _ = enable_query_alert(session, t.id, SLOW, cache=cache)
        rec.mean_time_ms = 650.0
        session.commit()
        (row,) = list_alert_queries(session, t.id)
        assert (row["category"], row["severity"], row["threshold"]) == ("Slow Query", "high", "> 500ms")

    def test_enable_drops_cached_context(self, session, make_target, cache):
        t = make_target()
        get_or_build_context(session, t.id, cache)
        assert cache.get(t.id) is not None
        enable_query_alert(session, t.id, SLOW, cache=cache)
        assert cache.get(t.id) is None
        rebuilt = get_or_build_context(session, t.id, cache)
        assert [r["query"] for r in rebuilt["query_records"]] == [SLOW]

    def test_disable_drops_cached_context(self, session, make_target, cache):
        t = make_target()
        rec, _ = enable_query_alert(session, t.id, SLOW, cache=cache)
        assert get_or_build_context(session, t.id, cache)["query_records"][0]["alerts_enabled"] is True
        disable_query_alert(session, t.id, rec.query_hash, cache=cache)
        assert cache.get(t.id) is None
        assert get_or_build_context(session, t.id, cache)["query_records"][0]["alerts_enabled"] is False


class TestAlertNotifier:
    def _settings(self, **extra):
        base = {"SMTP_HOST": "smtp.example.com", "EMAIL_FROM": "monitor@example.com", "ALERT_RECIPIENTS": "dba@example.com, ops@example.com"}
        base.update(extra)
        return Settings(**base)

    def _events(self):
        return [{"query": SLOW, "mean_time_ms": 1500.0, "calls": 3, "rows_returned": 9, "rank": 1, "detected_at": "2026-01-01T00:00:00"}]

    def test_sends_one_email_per_batch(self):
        sent = []
        notifier = AlertNotifier(settings=self._settings(), sender=lambda *a, **k: sent.append((a, k)) or {"status": "sent"})
        result = notifier.send(self._events(), {"target_id": 1, "host": "db1", "database_name": "shop"})
        assert result == {"status": "sent"}
        (args, kwargs), = sent
        assert args[0] == "Critical Query Alert: shop at db1"
        assert "Severity: High" in args[1]
        assert args[3] == ["dba@example.com", "ops@example.com"]
        assert kwargs["high_priority"] is True

    def test_unconfigured_smtp_skips(self):
        notifier = AlertNotifier(settings=Settings(), sender=lambda *a, **k: {"status": "sent"})
        assert notifier.send(self._events(), {"target_id": 1})["status"] == "skipped"

    def test_cooldown_suppresses_repeat(self, fake_redis):
        sent = []
        notifier = AlertNotifier(
            settings=self._settings(ALERT_COOLDOWN_MINUTES=10),
            sender=lambda *a, **k: sent.append(a) or {"status": "sent"},
            redis_client=fake_redis,
        )
        info = {"target_id": 5, "host": "db", "database_name": "shop"}
        assert notifier.send(self._events(), info)["status"] == "sent"
        assert notifier.send(self._events(), info)["status"] == "suppressed"
        assert len(sent) == 1

    def test_transport_error_is_reported_not_raised(self):
        notifier = AlertNotifier(settings=self._settings(), sender=lambda *a, **k: {"status": "error", "error": "refused"})
        assert notifier.send(self._events(), {"target_id": 1, "host": "h", "database_name": "d"})["status"] == "error"

    def test_failed_send_does_not_start_cooldown(self, fake_redis):
        outcomes = [{"status": "error", "error": "refused"}, {"status": "sent"}]
        notifier = AlertNotifier(
            settings=self._settings(ALERT_COOLDOWN_MINUTES=10),
            sender=lambda *a, **k: outcomes.pop(0),
            redis_client=fake_redis,
        )
        info = {"target_id": 7, "host": "db", "database_name": "shop"}
        assert notifier.send(self._events(), info)["status"] == "error"
        assert fake_redis.get("alert_cooldown:7") is None
        assert notifier.send(self._events(), info)["status"] == "sent"
        assert notifier.send(self._events(), info)["status"] == "suppressed"
