import logging

import requests
from flask import current_app

from errors import DependencyError

logger = logging.getLogger(__name__)

TWILIO_MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"
SMS_TIMEOUT_SECONDS = 10


def mask_phone(phone: str) -> str:
    if not phone or len(phone) <= 4:
        return "****"
    return "*" * (len(phone) - 4) + phone[-4:]


def sms_configured() -> bool:
    cfg = current_app.config
    return bool(cfg.get("TWILIO_ACCOUNT_SID") and cfg.get("TWILIO_AUTH_TOKEN") and cfg.get("TWILIO_PHONE_NUMBER"))


def send_sms(to: str, body: str) -> None:
    """
    Deliver a text message through Twilio's REST API.

    Without provider credentials, dev builds write the message to the log
    instead; prod builds treat that as a delivery failure.
    """
    cfg = current_app.config

    if not sms_configured():
        if cfg.get("IS_DEV", True):
            logger.warning("[dev] SMS provider not configured; message for %s: %s", to, body)
            return
        logger.error("SMS provider not configured; cannot deliver to %s", mask_phone(to))
        raise DependencyError("Failed to send OTP")

    sid = cfg["TWILIO_ACCOUNT_SID"]
    try:
        resp = requests.post(
            TWILIO_MESSAGES_URL.format(sid=sid),
            data={"From": cfg["TWILIO_PHONE_NUMBER"], "To": to, "Body": body},
            auth=(sid, cfg["TWILIO_AUTH_TOKEN"]),
            timeout=SMS_TIMEOUT_SECONDS,
        )
    except requests.RequestException as e:
        logger.error("SMS delivery to %s failed: %s", mask_phone(to), e)
        raise DependencyError("Failed to send OTP") from e

    if resp.status_code >= 400:
        logger.error(
            "SMS provider rejected message to %s: HTTP %s %s",
            mask_phone(to), resp.status_code, resp.text[:200],
        )
        raise DependencyError("Failed to send OTP")
