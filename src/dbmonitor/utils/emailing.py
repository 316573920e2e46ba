"""Minimal SMTP helper for alert emails (plain text with an HTML alternative)."""
from __future__ import annotations
import smtplib
import ssl
from email.message import EmailMessage
from typing import Sequence


def send_email(subject: str, text_body: str, html_body: str | None, recipients: Sequence[str], sender: str, smtp_host: str, smtp_port: int = 587, username: str | None = None, password: str | None = None, high_priority: bool = False) -> dict:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = sender
    msg["To"] = ", ".join(recipients)
    if high_priority:
        msg["X-Priority"] = "1"
        msg["Importance"] = "high"
    msg.set_content(text_body)
    if html_body:
        msg.add_alternative(html_body, subtype="html")
    try:
        context = ssl.create_default_context()
        with smtplib.SMTP(smtp_host, smtp_port, timeout=15) as server:
            server.starttls(context=context)
            if username and password:
                server.login(username, password)
            server.send_message(msg)
        return {"status": "sent"}
    except (smtplib.SMTPException, OSError) as e:
        return {"status": "error", "error": str(e)}
