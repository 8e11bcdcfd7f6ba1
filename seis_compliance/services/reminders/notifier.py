"""Notification collaborators that deliver reminder items."""

from __future__ import annotations

import html
import logging
import smtplib
import time
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formatdate, make_msgid
from typing import Protocol
from urllib.parse import unquote, urlparse

from seis_compliance.config import settings
from seis_compliance.models.compliance import ReminderItem, ReminderType
from seis_compliance.observability.metrics import metrics
from seis_compliance.services.errors import NotificationError

logger = logging.getLogger("seis_compliance.reminders.notifier")

DEFAULT_SMTP_TIMEOUT = 15.0


class Notifier(Protocol):
    """Accepts one reminder and reports whether delivery succeeded. No retries."""

    def send(self, item: ReminderItem) -> bool:
        ...


@dataclass(frozen=True)
class ReminderTemplate:
    title: str
    message: str
    urgency: str
    action_required: bool


REMINDER_TEMPLATES: dict[ReminderType, ReminderTemplate] = {
    ReminderType.COMPLIANCE_SUBMISSION_DUE: ReminderTemplate(
        title="Post-Approval Compliance Due",
        message=(
            "You need to submit your SEIS1/EIS1 form to HMRC within 3 months of "
            "issuing shares. Please record the submission in your dashboard."
        ),
        urgency="medium",
        action_required=True,
    ),
    ReminderType.AUTHORISATION_EXPIRED: ReminderTemplate(
        title="Authorisation Letter Expired",
        message=(
            "Your agent authorisation letter has expired. Please sign a new "
            "authorisation letter to continue with your SEIS/EIS application."
        ),
        urgency="high",
        action_required=True,
    ),
    ReminderType.AUTHORISATION_EXPIRING: ReminderTemplate(
        title="Authorisation Letter Expiring Soon",
        message=(
            "Your agent authorisation letter will expire soon. Please sign a new "
            "authorisation letter to avoid delays."
        ),
        urgency="medium",
        action_required=True,
    ),
}


def render_subject(item: ReminderItem) -> str:
    return f"{REMINDER_TEMPLATES[item.reminder_type].title} - {item.company_name}"


def render_text(item: ReminderItem) -> str:
    template = REMINDER_TEMPLATES[item.reminder_type]
    lines = [
        template.title + (f" ({item.overdue_days} days overdue)" if item.overdue_days else ""),
        "",
        f"Company: {item.company_name}",
        f"Due date: {item.due_date.date().isoformat()}",
        "",
        "Dear Founder,",
        "",
        template.message,
        "",
    ]
    if template.action_required:
        lines.append(f"Action required: please visit {settings.dashboard_url}")
    else:
        lines.append("No action is required from you at this time.")
    return "\n".join(lines) + "\n"


def render_html(item: ReminderItem) -> str:
    template = REMINDER_TEMPLATES[item.reminder_type]
    overdue = f" ({item.overdue_days} days overdue)" if item.overdue_days else ""
    parts = [
        "<html>",
        "<body>",
        f'<div class="urgency-{html.escape(template.urgency)}">',
        f"<h2>{html.escape(template.title)}{overdue}</h2>",
        f"<p><strong>Company:</strong> {html.escape(item.company_name)}</p>",
        f"<p><strong>Due date:</strong> {item.due_date.date().isoformat()}</p>",
        "</div>",
        "<p>Dear Founder,</p>",
        f"<p>{html.escape(template.message)}</p>",
    ]
    if template.action_required:
        href = html.escape(settings.dashboard_url)
        parts.append(f'<p><strong>Action required:</strong> <a href="{href}">View dashboard</a></p>')
    parts.extend(["</body>", "</html>"])
    return "\n".join(parts)


class LogOnlyNotifier(Notifier):
    """Logs reminders instead of sending them (dry runs, unconfigured SMTP)."""

    def __init__(self) -> None:
        self.logged = 0

    def send(self, item: ReminderItem) -> bool:
        self.logged += 1
        logger.info(
            "reminders.notification.logged",
            extra={
                "company_id": str(item.company_id),
                "reminder_type": item.reminder_type.value,
                "subject": render_subject(item),
            },
        )
        return True


@dataclass(frozen=True)
class SMTPConfig:
    host: str
    port: int
    username: str | None
    password: str | None
    use_ssl: bool
    disable_tls: bool
    from_address: str
    reply_to: str | None


def build_smtp_config() -> SMTPConfig:
    missing: list[str] = []
    if not settings.email_smtp_url:
        missing.append("EMAIL_SMTP_URL")
    if not settings.email_from:
        missing.append("EMAIL_FROM")
    if missing:
        raise NotificationError(
            f"SMTP delivery requires the following env vars: {', '.join(missing)}."
        )
    parsed = urlparse(settings.email_smtp_url)
    if parsed.scheme not in {"smtp", "smtps", "smtp+ssl"}:
        raise NotificationError("EMAIL_SMTP_URL must start with smtp:// or smtps://")
    use_ssl = parsed.scheme in {"smtps", "smtp+ssl"}
    return SMTPConfig(
        host=parsed.hostname or "localhost",
        port=parsed.port or (465 if use_ssl else 587),
        username=unquote(parsed.username) if parsed.username else None,
        password=unquote(parsed.password) if parsed.password else None,
        use_ssl=use_ssl,
        disable_tls=bool(settings.email_disable_tls),
        from_address=settings.email_from,
        reply_to=settings.email_reply_to,
    )


class SMTPReminderNotifier(Notifier):
    """Sends each reminder as a text+HTML email to the company's contact address."""

    def __init__(self, config: SMTPConfig | None = None) -> None:
        self._config = config or build_smtp_config()

    def send(self, item: ReminderItem) -> bool:
        if not item.contact_email:
            logger.warning(
                "reminders.notification.no_recipient",
                extra={"company_id": str(item.company_id), "reminder_type": item.reminder_type.value},
            )
            metrics.increment("reminders.notification.failed", tags={"reason": "no_recipient"})
            return False
        try:
            self._deliver(item)
        except NotificationError as exc:
            logger.error(
                "reminders.notification.failed",
                extra={
                    "company_id": str(item.company_id),
                    "reminder_type": item.reminder_type.value,
                    "code": exc.code,
                    "error": str(exc),
                },
            )
            metrics.increment("reminders.notification.failed", tags={"reason": exc.code})
            return False
        return True

    def _deliver(self, item: ReminderItem) -> None:
        config = self._config
        message = self._render_message(item)
        start = time.perf_counter()
        try:
            client = self._create_client()
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationError(
                f"SMTP connection failed for {config.host}:{config.port}: {exc}"
            ) from exc
        try:
            if not config.use_ssl:
                client.ehlo()
                if not config.disable_tls:
                    client.starttls()
                    client.ehlo()
            if config.username:
                client.login(config.username, config.password or "")
            client.send_message(message, to_addrs=[item.contact_email])
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationError(
                f"SMTP delivery failed for {config.host}:{config.port}: {exc}"
            ) from exc
        finally:
            try:
                client.quit()
            except (smtplib.SMTPException, OSError):  # pragma: no cover - best-effort cleanup
                logger.debug("SMTP quit failed", exc_info=True)

        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "reminders.notification.sent",
            extra={
                "company_id": str(item.company_id),
                "reminder_type": item.reminder_type.value,
                "message_id": message["Message-ID"],
            },
        )
        metrics.increment(
            "reminders.notification.sent", tags={"reminder_type": item.reminder_type.value}
        )
        metrics.timing("reminders.notification.duration_ms", duration_ms)

    def _create_client(self) -> smtplib.SMTP:
        config = self._config
        if config.use_ssl:
            return smtplib.SMTP_SSL(config.host, config.port, timeout=DEFAULT_SMTP_TIMEOUT)
        return smtplib.SMTP(config.host, config.port, timeout=DEFAULT_SMTP_TIMEOUT)

    def _render_message(self, item: ReminderItem) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = render_subject(item)
        message["From"] = self._config.from_address
        message["To"] = item.contact_email
        if self._config.reply_to:
            message["Reply-To"] = self._config.reply_to
        message["Date"] = formatdate(localtime=True)
        message["Message-ID"] = make_msgid()
        message.set_content(render_text(item))
        message.add_alternative(render_html(item), subtype="html")
        return message


def build_notifier(*, dry_run: bool = False) -> Notifier:
    """Return the SMTP notifier when configured, otherwise a log-only notifier."""
    if dry_run:
        return LogOnlyNotifier()
    if not settings.smtp_configured:
        logger.info("reminders.notifier.log_only", extra={"reason": "smtp_not_configured"})
        return LogOnlyNotifier()
    return SMTPReminderNotifier()
