"""Alert dispatch for critical query events.

AlertNotifier.send is the only entry point the alert engine uses. Transport
problems come back as {"status": "error"} and are never raised.
"""
from __future__ import annotations
import html
import logging
from datetime import datetime
from typing import Callable
import redis
from prometheus_client import Counter
from dbmonitor.classification import notification_severity
from dbmonitor.config import Settings, get_settings, parse_recipients
from dbmonitor.infrastructure.redis_client import get_redis
from dbmonitor.utils.emailing import send_email

logger = logging.getLogger(__name__)

NOTIFICATIONS = Counter('alert_notifications_total', 'Alert notifications by outcome', ['outcome'])

RECOMMENDATIONS = (
    "Review the execution plan using EXPLAIN ANALYZE",
    "Check for missing indexes",
    "Consider query optimization or refactoring",
    "Add appropriate indexes for frequently queried columns",
)


def _clip(text: str, n: int) -> str:
    return text[:n] + ("..." if len(text) > n else "")


def format_alert_text(events: list[dict], target_info: dict) -> str:
    lines = [
        "CRITICAL DATABASE QUERY ALERT",
        "",
        f"Database: {target_info.get('database_name')} at {target_info.get('host')}",
        f"Alert time: {datetime.utcnow().strftime('%Y-%m-%d %H:%M:%S')} UTC",
        "",
        "The following queries require attention:",
        "",
    ]
    for i, ev in enumerate(events, start=1):
        lines += [
            f"{i}. Query: {_clip(ev['query'], 100)}",
            f"   Execution Time: {ev['mean_time_ms']:.2f} ms",
            f"   Severity: {notification_severity(ev['mean_time_ms'])}",
            f"   Calls: {ev['calls']}",
            f"   Rows: {ev['rows_returned']}",
            f"   Detected At: {ev['detected_at']}",
            "",
        ]
    lines.append("Recommendations:")
    lines += [f"- {r}" for r in RECOMMENDATIONS]
    return "\n".join(lines)


def format_alert_html(events: list[dict], target_info: dict) -> str:
    rows = "".join(
        "<tr><td>{rank}</td><td><code>{query}</code></td><td>{mean:.2f} ms</td><td>{sev}</td><td>{calls}</td><td>{rows}</td></tr>".format(
            rank=ev.get("rank", i),
            query=html.escape(_clip(ev["query"], 200)),
            mean=ev["mean_time_ms"],
            sev=notification_severity(ev["mean_time_ms"]),
            calls=ev["calls"],
            rows=ev["rows_returned"],
        )
        for i, ev in enumerate(events, start=1)
    )
    recs = "".join(f"<li>{html.escape(r)}</li>" for r in RECOMMENDATIONS)
    return (
        f"<h2>Critical Query Alert</h2>"
        f"<p>Database <b>{html.escape(str(target_info.get('database_name')))}</b> at {html.escape(str(target_info.get('host')))}</p>"
        "<table border='1' cellpadding='4' cellspacing='0'>"
        "<tr><th>#</th><th>Query</th><th>Mean</th><th>Severity</th><th>Calls</th><th>Rows</th></tr>"
        f"{rows}</table><h3>Recommendations</h3><ul>{recs}</ul>"
    )


class AlertNotifier:
    def __init__(self, settings: Settings | None = None, sender: Callable[..., dict] = send_email, redis_client=None):
        self.settings = settings or get_settings()
        self._sender = sender
        self._redis = redis_client

    def _cooldown_active(self, target_id) -> bool:
        """Set-if-absent a per-target cooldown key; True when one already exists."""
        minutes = self.settings.alert_cooldown_minutes
        if minutes <= 0:
            return False
        try:
            client = self._redis if self._redis is not None else get_redis()
            acquired = client.set(f"alert_cooldown:{target_id}", datetime.utcnow().isoformat(), nx=True, ex=minutes * 60)
        except (redis.RedisError, OSError) as e:
            logger.warning("alert cooldown check unavailable, notifying anyway: %s", e)
            return False
        return not acquired

    def _release_cooldown(self, target_id) -> None:
        if self.settings.alert_cooldown_minutes <= 0:
            return
        try:
            client = self._redis if self._redis is not None else get_redis()
            client.delete(f"alert_cooldown:{target_id}")
        except (redis.RedisError, OSError) as e:
            logger.warning("could not clear alert cooldown for target %s: %s", target_id, e)

    def send(self, events: list[dict], target_info: dict) -> dict:
        if not events:
            return {"status": "skipped", "reason": "no_events"}
        s = self.settings
        recipients = parse_recipients(s.alert_recipients)
        if not (s.smtp_host and s.email_from and recipients):
            NOTIFICATIONS.labels(outcome="skipped").inc()
            logger.warning("SMTP not configured; %d critical events for target %s not emailed", len(events), target_info.get("target_id"))
            return {"status": "skipped", "reason": "smtp_not_configured"}
        if self._cooldown_active(target_info.get("target_id")):
            NOTIFICATIONS.labels(outcome="suppressed").inc()
            return {"status": "suppressed", "reason": "cooldown"}
        subject = f"Critical Query Alert: {target_info.get('database_name')} at {target_info.get('host')}"
        try:
            result = self._sender(
                subject,
                format_alert_text(events, target_info),
                format_alert_html(events, target_info),
                recipients,
                s.email_from,
                s.smtp_host,
                s.smtp_port,
                s.smtp_user,
                s.smtp_password,
                high_priority=True,
            )
        except Exception:
            self._release_cooldown(target_info.get("target_id"))
            raise
        outcome = "sent" if result.get("status") == "sent" else "error"
        NOTIFICATIONS.labels(outcome=outcome).inc()
        if outcome == "error":
            logger.error("alert email for target %s failed: %s", target_info.get("target_id"), result.get("error"))
            # cooldown only covers delivered alerts
            self._release_cooldown(target_info.get("target_id"))
        return result
