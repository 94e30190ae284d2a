import re
import smtplib
from email.message import EmailMessage
from typing import Iterable, Union

import structlog

from ..config import settings

logger = structlog.get_logger(__name__)

SENT = "sent"
SIMULATED = "simulated"
FAILED = "failed"

_TAG_RE = re.compile(r"<[^>]+>")


def smtp_configured() -> bool:
    return bool(settings.smtp_host and _sender())


def _sender() -> str:
    return settings.mail_from or settings.smtp_username or ""


def html_to_text(html: str) -> str:
    text = re.sub(r"<\s*(br|/p|/li)\s*/?>", "\n", html or "", flags=re.I)
    return _TAG_RE.sub("", text).strip()


def send_email(to: Union[str, Iterable[str]], subject: str, html: str) -> str:
    """
    Send one HTML email.

    Never raises: returns ``sent``, ``simulated`` (SMTP not configured, the
    message is only logged) or ``failed``.
    """
    recipients = [to] if isinstance(to, str) else [r for r in to if r]
    if not recipients:
        return FAILED

    if not smtp_configured():
        logger.info("email_simulated", to=recipients, subject=subject)
        return SIMULATED

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = _sender()
    msg["To"] = ", ".join(recipients)
    msg.set_content(html_to_text(html))
    msg.add_alternative(html, subtype="html")
    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=settings.smtp_timeout_seconds) as s:
            if settings.smtp_tls:
                s.starttls()
            if settings.smtp_username and settings.smtp_password:
                s.login(settings.smtp_username, settings.smtp_password)
            s.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        logger.warning("email_send_failed", to=recipients, subject=subject, error=str(e))
        return FAILED
    logger.info("email_sent", to=recipients, subject=subject)
    return SENT
