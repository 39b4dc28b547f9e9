"""
Notification emails sent after moderation and support actions.

These are side effects of a mutation that has already been committed,
so they go through ``notify_best_effort``: a failure is logged and never
reaches the caller.
"""
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from flask import current_app

logger = logging.getLogger(__name__)


def send_email(to_email: str, subject: str, body: str) -> bool:
    cfg = current_app.config
    host = cfg.get("SMTP_HOST")
    if not host:
        logger.info("SMTP not configured; skipping email to %s (%s)", to_email, subject)
        return False

    msg = MIMEMultipart()
    msg["From"] = cfg.get("MAIL_FROM") or cfg.get("SMTP_USERNAME") or "no-reply@sellx.local"
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.attach(MIMEText(body, "plain"))

    with smtplib.SMTP_SSL(host, int(cfg.get("SMTP_PORT") or 465), timeout=10) as server:
        if cfg.get("SMTP_USERNAME"):
            server.login(cfg["SMTP_USERNAME"], cfg.get("SMTP_PASSWORD") or "")
        server.sendmail(msg["From"], [to_email], msg.as_string())
    return True


def notify_best_effort(fn, *args, **kwargs) -> bool:
    try:
        return bool(fn(*args, **kwargs))
    except Exception:
        logger.exception("Notification %s failed", getattr(fn, "__name__", fn))
        return False


def _seller_email(user):
    details = user.seller_details or {}
    return details.get("email") or user.email


def send_seller_approval_email(user) -> bool:
    email = _seller_email(user)
    if not email:
        return False
    return send_email(
        email,
        "Your SellX seller account is approved",
        f"Hi {user.name or 'Seller'},\n\nYour seller application has been approved. "
        "You can start listing products now.\n",
    )


def send_seller_rejection_email(user) -> bool:
    email = _seller_email(user)
    if not email:
        return False
    return send_email(
        email,
        "Your SellX seller application",
        f"Hi {user.name or 'Seller'},\n\nUnfortunately your seller application was not approved. "
        "Please contact support for details.\n",
    )


def send_account_suspension_email(user) -> bool:
    email = _seller_email(user)
    if not email:
        return False
    return send_email(
        email,
        "Your SellX account has been suspended",
        f"Hi {user.name or 'User'},\n\nYour account has been suspended by our moderation team. "
        "Reply to a support ticket if you believe this is a mistake.\n",
    )


def send_support_reply_email(ticket, message: str) -> bool:
    if not ticket.email:
        return False
    return send_email(
        ticket.email,
        f"Update on your support ticket {ticket.ticket_number}",
        f"Our support team replied to your ticket {ticket.ticket_number}:\n\n{message}\n",
    )
