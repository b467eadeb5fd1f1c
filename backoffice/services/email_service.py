"""
Billing Back Office
Email Service.

Sends worklog documents to customer recipients with template support.
When SMTP is not configured, emails are logged but not sent (dev/test mode).

Uses:
    - Flask config (MAIL_SERVER, MAIL_PORT, etc.)
    - Falls back to logging-only mode when SMTP is not configured
    - All emails are recorded in EmailLog for audit

Configuration (env vars):
    MAIL_SERVER     SMTP host (default: None → log-only mode)
    MAIL_PORT       SMTP port (default: 587)
    MAIL_USE_TLS    Use TLS (default: true)
    MAIL_USERNAME   SMTP username
    MAIL_PASSWORD   SMTP password
    MAIL_DEFAULT_SENDER  Default from address
"""

from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

from flask import current_app

from backoffice.models import db, utcnow
from backoffice.models.documents import EmailLog

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Email Templates
# ═══════════════════════════════════════════════════════════════════════════

_TEMPLATES: dict[str, dict[str, str]] = {
    "worklog_document_sv": {
        "subject": "Arbetsrapport för faktura {document_number}",
        "attachment": "Arbetsrapport-faktura-{document_number}.pdf",
        "text": "Hej!\n\nHär kommer arbetsrapporten som PDF för faktura {document_number}.",
        "html": """
        <p>Hej!</p>
        <p>Här kommer arbetsrapporten som PDF för faktura <strong>{document_number}</strong>.</p>
        <p>Med vänliga hälsningar,<br>{sender_name}</p>
        """,
    },
    "worklog_document_en": {
        "subject": "Work report for invoice {document_number}",
        "attachment": "Work-report-invoice-{document_number}.pdf",
        "text": "Hello!\n\nHere is the work report as a PDF for invoice {document_number}.",
        "html": """
        <p>Hello!</p>
        <p>Here is the work report as a PDF for invoice <strong>{document_number}</strong>.</p>
        <p>Best regards,<br>{sender_name}</p>
        """,
    },
}


@dataclass(frozen=True)
class Attachment:
    file_name: str
    content: bytes
    mime: str = "application/pdf"


class EmailService:
    """
    Email sending service with template support.

    In development/test mode (no MAIL_SERVER configured), emails are
    logged to the database but not actually sent via SMTP.
    """

    @staticmethod
    def is_configured() -> bool:
        """Check if SMTP is configured."""
        return bool(current_app.config.get("MAIL_SERVER"))

    @staticmethod
    def get_template(template_name: str) -> dict[str, str] | None:
        """Get an email template by name."""
        return _TEMPLATES.get(template_name)

    @classmethod
    def send_document(
        cls,
        *,
        to_list: list[str],
        subject: str,
        html_body: str,
        text_body: str | None = None,
        attachment: Attachment | None = None,
        template_name: str | None = None,
        document_number: str | None = None,
    ) -> EmailLog:
        """
        Send one email to all recipients as BCC and log it.

        If SMTP is not configured, the email is logged with status='sent'
        (in dev mode) to simulate sending without actual delivery.
        SMTP failures are recorded on the log row, never raised.

        Returns:
            The EmailLog record for this email.
        """
        log = EmailLog(
            recipients=",".join(to_list),
            subject=subject,
            template_name=template_name,
            status="queued",
            document_number=document_number,
            attachment_name=attachment.file_name if attachment else None,
        )
        db.session.add(log)
        db.session.flush()

        if not cls.is_configured():
            # Dev/test mode: log only
            log.status = "sent"
            log.sent_at = utcnow()
            logger.info(
                "Email (dev mode): bcc=%s subject='%s' template=%s",
                to_list, subject, template_name,
                extra={"document_number": document_number},
            )
            return log

        try:
            cls._send_smtp(to_list=to_list, subject=subject, html_body=html_body,
                           text_body=text_body, attachment=attachment)
            log.status = "sent"
            log.sent_at = utcnow()
            logger.info("Email sent: bcc=%s subject='%s'", to_list, subject,
                        extra={"document_number": document_number})
        except (smtplib.SMTPException, OSError) as exc:
            log.status = "failed"
            log.error_message = str(exc)[:1000]
            logger.error("Email failed: bcc=%s error=%s", to_list, exc,
                         extra={"document_number": document_number})

        return log

    @classmethod
    def send_from_template(
        cls,
        *,
        to_list: list[str],
        template_name: str,
        context: dict[str, Any],
        attachment_content: bytes | None = None,
        document_number: str | None = None,
    ) -> EmailLog | None:
        """
        Send an email using a named template.

        Template variables are interpolated from the context dict; the
        template also names the attachment file.
        """
        template = cls.get_template(template_name)
        if not template:
            logger.warning("Email template not found: %s", template_name)
            return None

        ctx = _SafeDict({"sender_name": current_app.config.get("MAIL_SENDER_NAME", "Back Office")})
        ctx.update(context)
        attachment = None
        if attachment_content is not None:
            attachment = Attachment(
                file_name=template["attachment"].format_map(ctx),
                content=attachment_content,
            )

        return cls.send_document(
            to_list=to_list,
            subject=template["subject"].format_map(ctx),
            html_body=template["html"].format_map(ctx),
            text_body=template["text"].format_map(ctx),
            attachment=attachment,
            template_name=template_name,
            document_number=document_number,
        )

    @staticmethod
    def _send_smtp(*, to_list: list[str], subject: str, html_body: str,
                   text_body: str | None, attachment: Attachment | None) -> None:
        """Actually send via SMTP. Recipients go in the envelope only (BCC)."""
        cfg = current_app.config
        server = cfg.get("MAIL_SERVER")
        port = cfg.get("MAIL_PORT", 587)
        use_tls = cfg.get("MAIL_USE_TLS", True)
        username = cfg.get("MAIL_USERNAME")
        password = cfg.get("MAIL_PASSWORD")
        sender = cfg.get("MAIL_DEFAULT_SENDER", f"noreply@{server}")

        msg = MIMEMultipart("mixed")
        msg["Subject"] = subject
        msg["From"] = sender
        body = MIMEMultipart("alternative")
        if text_body:
            body.attach(MIMEText(text_body, "plain", "utf-8"))
        body.attach(MIMEText(html_body, "html", "utf-8"))
        msg.attach(body)

        if attachment is not None:
            subtype = attachment.mime.split("/", 1)[-1]
            part = MIMEApplication(attachment.content, _subtype=subtype)
            part.add_header("Content-Disposition", "attachment", filename=attachment.file_name)
            msg.attach(part)

        with smtplib.SMTP(server, port, timeout=30) as smtp:
            if use_tls:
                smtp.starttls()
            if username and password:
                smtp.login(username, password)
            smtp.send_message(msg, from_addr=sender, to_addrs=to_list)


class _SafeDict(dict):
    """Dict that returns {key} for missing keys instead of raising."""

    def __missing__(self, key):
        return f"{{{key}}}"
