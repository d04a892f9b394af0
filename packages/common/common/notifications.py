"""Notification dispatcher: formats renewal reminders, system notices and
alerts, hands them to a transport, and keeps a bounded delivery history.

Delivery is simulated: the default :class:`OutboxTransport` records every
email/SMS in the SQLite outbox and logs it. There is no retry; a transport
failure is reported to the caller.
"""

from __future__ import annotations

import html
import logging
import threading
import time
import uuid
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Callable, Protocol
from zoneinfo import ZoneInfo

from common.errors import ValidationError
from common.models import EmailMessage, Notification, RenewalNotification, SmsMessage
from common.outbox import post_message
from common.security import SecurityLog

log = logging.getLogger(__name__)

SEVERITIES = ("low", "medium", "high", "critical")

SEVERITY_COLORS = {
    "low": "#10b981",
    "medium": "#f59e0b",
    "high": "#ef4444",
    "critical": "#7c2d12",
}

DEFAULT_MAX_HISTORY = 1000


class Transport(Protocol):
    def send_email(self, message: EmailMessage) -> None: ...

    def send_sms(self, message: SmsMessage) -> None: ...


class OutboxTransport:
    """Simulated delivery: writes to the outbox table instead of an SMTP/SMS gateway."""

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path).expanduser()

    def send_email(self, message: EmailMessage) -> None:
        post_message(
            self._db_path,
            channel="email",
            recipient=message.to,
            subject=message.subject,
            body=message.body,
            html=message.html,
            status="sent",
        )
        log.info("[EMAIL] To: %s Subject: %s", message.to, message.subject)

    def send_sms(self, message: SmsMessage) -> None:
        post_message(
            self._db_path,
            channel="sms",
            recipient=message.to,
            body=message.message,
            status="sent",
        )
        log.info("[SMS] To: %s", message.to)


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------


def renewal_urgency(days_until_renewal: int) -> tuple[str, str]:
    """Return ``(urgency label, call to action)`` for a renewal reminder."""
    if days_until_renewal <= 0:
        return (
            "URGENT",
            "Your plan has expired! Renew now to keep using our services.",
        )
    if days_until_renewal == 1:
        return (
            "IMPORTANT",
            "Your plan expires tomorrow! Renew today to avoid a service interruption.",
        )
    if days_until_renewal <= 3:
        return (
            "ATTENTION",
            f"Your plan expires in {days_until_renewal} days. Renew now to continue without interruptions.",
        )
    return (
        "REMINDER",
        f"Your plan expires in {days_until_renewal} days. Consider renewing early.",
    )


def _days_left_label(days_until_renewal: int) -> str:
    return str(days_until_renewal) if days_until_renewal > 0 else "EXPIRED"


def _page(header_bg: str, header: str, content: str) -> str:
    return (
        "<!DOCTYPE html>\n"
        "<html>\n<head>\n<meta charset=\"UTF-8\">\n<style>\n"
        "body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; }\n"
        ".container { max-width: 600px; margin: 0 auto; padding: 20px; }\n"
        f".header {{ background: {header_bg}; color: white; padding: 20px; text-align: center; }}\n"
        ".content { padding: 20px; background: #f9fafb; }\n"
        ".box { background: white; padding: 20px; border-radius: 5px; margin: 20px 0; }\n"
        "</style>\n</head>\n<body>\n<div class=\"container\">\n"
        f"<div class=\"header\"><h1>{header}</h1></div>\n"
        f"<div class=\"content\">\n{content}\n</div>\n"
        "</div>\n</body>\n</html>"
    )


class NotificationDispatcher:
    def __init__(
        self,
        transport: Transport,
        security_log: SecurityLog,
        admin_emails: list[str],
        brand: str = "Nuvelon",
        timezone: str = "America/Sao_Paulo",
        max_history: int = DEFAULT_MAX_HISTORY,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._transport = transport
        self._security = security_log
        self._admin_emails = admin_emails
        self._brand = brand
        self._tz = ZoneInfo(timezone)
        self._history: deque[Notification] = deque(maxlen=max_history)
        self._lock = threading.Lock()
        self._clock = clock

    @property
    def admin_emails(self) -> list[str]:
        return list(self._admin_emails)

    def set_admin_emails(self, emails: list[str]) -> None:
        self._admin_emails = list(emails)

    # -- senders ---------------------------------------------------------------

    def send_renewal_notification(self, notification: RenewalNotification) -> Notification:
        """Send a renewal reminder over every channel the client has.

        A client with neither email nor phone still gets a history record,
        addressed to ``admin``. When email goes out and SMS then fails, the
        email is still recorded (``failed_channel`` in its metadata) before
        the error is raised.
        """
        days = notification.days_until_renewal
        urgency, action = renewal_urgency(days)
        delivered: list[str] = []
        channel = None
        try:
            renewal_day = self._format_date(notification.renewal_date)

            if notification.email:
                channel = "email"
                self._transport.send_email(EmailMessage(
                    to=notification.email,
                    subject=f"[{urgency}] {notification.plan_name} plan renewal - {self._brand}",
                    body=self._renewal_text(notification, renewal_day, action),
                    html=self._renewal_html(notification, renewal_day, action),
                ))
                delivered.append(channel)

            if notification.phone:
                channel = "sms"
                self._transport.send_sms(SmsMessage(
                    to=notification.phone,
                    message=self._renewal_sms(notification, action),
                ))
                delivered.append(channel)
        except Exception as exc:
            if delivered:
                self._record(self._renewal_record(
                    notification, urgency, action, delivered, failed_channel=channel,
                ))
            log.error("Error sending renewal notification to %s: %s", notification.client_name, exc)
            self._security.log(
                "NOTIFICATION_FAILED",
                details={
                    "type": "renewal",
                    "client_id": notification.client_id,
                    "client_name": notification.client_name,
                    "channel": channel,
                    "delivered_channels": delivered,
                    "error": str(exc),
                },
                success=False,
                error=str(exc),
            )
            raise

        record = self._renewal_record(notification, urgency, action, delivered)
        self._record(record)
        log.info("Renewal notification sent to %s", notification.client_name)
        return record

    def send_system_notification(
        self, title: str, message: str, recipients: list[str]
    ) -> list[Notification]:
        """Email the same title/message to each recipient."""
        records: list[Notification] = []
        for recipient in recipients:
            self._transport.send_email(EmailMessage(
                to=recipient,
                subject=f"[SYSTEM] {title} - {self._brand}",
                body=message,
                html=self._system_html(title, message),
            ))
            now = self._clock()
            record = Notification(
                id=f"system_{uuid.uuid4().hex}",
                type="system",
                title=title,
                message=message,
                recipient=recipient,
                recipient_type="email",
                created_at=now,
                sent_at=now,
            )
            self._record(record)
            records.append(record)

        log.info("System notification sent to %d recipient(s)", len(recipients))
        return records

    def send_alert(self, title: str, message: str, severity: str) -> list[Notification]:
        """Email a severity-tagged alert to the admin list."""
        if severity not in SEVERITIES:
            raise ValidationError(
                f"Invalid severity {severity!r}; expected one of {', '.join(SEVERITIES)}"
            )

        tag = f"[ALERT {severity.upper()}]"
        alert_message = f"{tag} {message}"
        records: list[Notification] = []
        for email in self._admin_emails:
            self._transport.send_email(EmailMessage(
                to=email,
                subject=f"{tag} {title} - {self._brand}",
                body=alert_message,
                html=self._alert_html(title, message, severity),
            ))
            now = self._clock()
            record = Notification(
                id=f"alert_{severity}_{uuid.uuid4().hex}",
                type="alert",
                title=title,
                message=alert_message,
                recipient=email,
                recipient_type="email",
                created_at=now,
                sent_at=now,
                metadata={"severity": severity},
            )
            self._record(record)
            records.append(record)

        log.warning("Alert (%s) sent to %d admin(s): %s", severity, len(self._admin_emails), title)
        return records

    # -- history ---------------------------------------------------------------

    def get_notification_history(self, limit: int = 100) -> list[Notification]:
        with self._lock:
            items = list(self._history)
        return items[-limit:] if limit > 0 else []

    def get_notifications_by_type(self, type: str) -> list[Notification]:
        with self._lock:
            return [n for n in self._history if n.type == type]

    def get_notifications_by_recipient(self, recipient: str) -> list[Notification]:
        with self._lock:
            return [n for n in self._history if n.recipient == recipient]

    def _record(self, notification: Notification) -> None:
        with self._lock:
            self._history.append(notification)

    def _renewal_record(
        self,
        n: RenewalNotification,
        urgency: str,
        action: str,
        channels: list[str],
        failed_channel: str | None = None,
    ) -> Notification:
        if n.email:
            recipient, recipient_type = n.email, "email"
        elif n.phone:
            recipient, recipient_type = n.phone, "phone"
        else:
            recipient, recipient_type = "admin", "admin"

        metadata = {
            "client_id": n.client_id,
            "client_name": n.client_name,
            "plan_name": n.plan_name,
            "renewal_date": n.renewal_date,
            "days_until_renewal": n.days_until_renewal,
            "urgency": urgency,
            "channels": list(channels),
        }
        if failed_channel is not None:
            metadata["failed_channel"] = failed_channel

        now = self._clock()
        return Notification(
            id=f"renewal_{n.client_id}_{int(now * 1000)}",
            type="renewal",
            title=f"{n.plan_name} plan renewal",
            message=action,
            recipient=recipient,
            recipient_type=recipient_type,
            created_at=now,
            sent_at=now,
            metadata=metadata,
        )

    # -- templates -------------------------------------------------------------

    def _format_date(self, ts: float) -> str:
        return datetime.fromtimestamp(ts, tz=self._tz).strftime("%d/%m/%Y")

    def _renewal_text(self, n: RenewalNotification, renewal_day: str, action: str) -> str:
        return (
            f"Hello {n.client_name},\n\n"
            f"{action}\n\n"
            "Your plan details:\n"
            f"- Plan: {n.plan_name}\n"
            f"- Renewal date: {renewal_day}\n"
            f"- Days left: {_days_left_label(n.days_until_renewal)}\n\n"
            "To renew, visit your account dashboard or get in touch with us.\n\n"
            f"Best regards,\nThe {self._brand} team"
        )

    def _renewal_html(self, n: RenewalNotification, renewal_day: str, action: str) -> str:
        days = n.days_until_renewal
        color = "#dc2626" if days <= 0 else "#ea580c" if days <= 3 else "#2563eb"
        content = (
            f"<h2>Hello {html.escape(n.client_name)},</h2>\n"
            f"<div class=\"box\" style=\"background: {color}; color: white;\">"
            f"<strong>{html.escape(action)}</strong></div>\n"
            "<div class=\"box\">\n<h3>Your plan details:</h3>\n"
            f"<p><strong>Plan:</strong> {html.escape(n.plan_name)}</p>\n"
            f"<p><strong>Renewal date:</strong> {renewal_day}</p>\n"
            f"<p><strong>Days left:</strong> {_days_left_label(days)}</p>\n</div>\n"
            "<p>To renew, visit your account dashboard or get in touch with us.</p>\n"
            f"<p>Best regards,<br>The {html.escape(self._brand)} team</p>"
        )
        return _page(
            "linear-gradient(135deg, #667eea 0%, #764ba2 100%)",
            f"{html.escape(self._brand)} Cloud Gaming",
            content,
        )

    def _renewal_sms(self, n: RenewalNotification, action: str) -> str:
        days = n.days_until_renewal
        tag = "URGENT" if days <= 0 else "IMPORTANT" if days <= 3 else "REMINDER"
        return f"[{tag}] {self._brand}: {action} Plan: {n.plan_name}."

    def _system_html(self, title: str, message: str) -> str:
        body = html.escape(message).replace("\n", "<br>")
        return _page(
            "#1f2937",
            f"{html.escape(self._brand)} - System Notification",
            f"<h2>{html.escape(title)}</h2>\n<div class=\"box\"><p>{body}</p></div>",
        )

    def _alert_html(self, title: str, message: str, severity: str) -> str:
        color = SEVERITY_COLORS[severity]
        body = html.escape(message).replace("\n", "<br>")
        return _page(
            color,
            f"ALERT {severity.upper()} - {html.escape(self._brand)}",
            f"<h2>{html.escape(title)}</h2>\n"
            f"<div class=\"box\" style=\"background: {color}; color: white;\"><p><strong>{body}</strong></p></div>\n"
            "<p>This is an automated system notification. Immediate action may be required.</p>",
        )
