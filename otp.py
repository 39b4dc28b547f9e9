"""
One-time phone verification codes.

Lifecycle of a code for a phone number::

    absent -> issued -> consumed   (correct code before expiry)
                     -> expired    (deleted when a late attempt is seen)
                     -> superseded (a new code overwrites it)
           -> absent

There is never more than one live code per phone. Verification only
reports the outcome; establishing a session is the caller's job.
"""
import hmac
import logging
import re
import secrets
from datetime import datetime, timedelta
from typing import Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

import sms
from errors import ValidationError
from models import db, OTPPurpose, RoleEnum, User, VerificationCode

logger = logging.getLogger(__name__)

PHONE_RE = re.compile(r"^\+?[1-9]\d{1,14}$")
DEFAULT_TTL_SECONDS = 5 * 60


class OTPNotFound(ValidationError):
    message = "OTP not found"


class OTPExpired(ValidationError):
    message = "OTP expired"


class OTPMismatch(ValidationError):
    message = "Invalid OTP"


def normalize_phone(raw) -> str:
    if not isinstance(raw, str):
        raise ValidationError("Invalid phone number")
    phone = re.sub(r"[\s\-()]", "", raw)
    if not PHONE_RE.match(phone):
        raise ValidationError("Invalid phone number")
    return phone


def generate_code() -> str:
    return str(100000 + secrets.randbelow(900000))


def _ttl_seconds() -> int:
    return int(current_app.config.get("OTP_TTL_SECONDS", DEFAULT_TTL_SECONDS))


# =========================================================
# Code store
# =========================================================
def lookup_code(phone: str) -> Optional[VerificationCode]:
    return VerificationCode.query.filter_by(phone=phone).first()


def store_code(phone: str, code: str, purpose: OTPPurpose, ttl_seconds: int) -> VerificationCode:
    expires_at = datetime.utcnow() + timedelta(seconds=ttl_seconds)

    record = lookup_code(phone)
    if record is None:
        record = VerificationCode(phone=phone, code=code, purpose=purpose, expires_at=expires_at)
        db.session.add(record)
        try:
            db.session.commit()
            return record
        except IntegrityError:
            # a concurrent request inserted the row first; overwrite it
            db.session.rollback()
            record = VerificationCode.query.filter_by(phone=phone).one()

    record.code = code
    record.purpose = purpose
    record.expires_at = expires_at
    record.created_at = datetime.utcnow()
    db.session.commit()
    return record


def delete_code(phone: str) -> int:
    deleted = VerificationCode.query.filter_by(phone=phone).delete(synchronize_session=False)
    db.session.commit()
    return deleted


def consume_code(record: VerificationCode) -> bool:
    """Delete the live code only if it is still the issuance that was checked."""
    deleted = (
        VerificationCode.query
        .filter_by(phone=record.phone, code=record.code, purpose=record.purpose, expires_at=record.expires_at)
        .delete(synchronize_session=False)
    )
    db.session.commit()
    return deleted == 1


# =========================================================
# Issue / verify
# =========================================================
def issue_code(phone, purpose: OTPPurpose = OTPPurpose.login) -> VerificationCode:
    phone = normalize_phone(phone)
    code = generate_code()
    record = store_code(phone, code, purpose, _ttl_seconds())

    minutes = max(_ttl_seconds() // 60, 1)
    # delivery failure leaves the stored code in place for a retry
    sms.send_sms(phone, f"Your SellX verification code is {code}. It expires in {minutes} minutes.")
    logger.info("Issued %s code for %s", purpose.value, sms.mask_phone(phone))
    return record


def verify_code(phone, submitted, purpose: OTPPurpose = OTPPurpose.login, now: Optional[datetime] = None) -> bool:
    if not phone or not submitted:
        raise ValidationError("Phone number and OTP are required")

    phone = normalize_phone(phone)
    submitted = str(submitted).strip()

    record = lookup_code(phone)
    if record is None or record.purpose != purpose:
        raise OTPNotFound()

    if record.is_expired(now):
        delete_code(phone)
        logger.info("Expired code presented for %s", sms.mask_phone(phone))
        raise OTPExpired()

    if not hmac.compare_digest(record.code, submitted):
        logger.info("Wrong code presented for %s", sms.mask_phone(phone))
        raise OTPMismatch()

    # a concurrent verification may have consumed it since the lookup
    if not consume_code(record):
        raise OTPNotFound()
    return True


# =========================================================
# Identity
# =========================================================
def resolve_identity(phone: str) -> User:
    """Find or create the user owning a freshly verified phone."""
    user = User.query.filter_by(phone=phone).first()

    if user is None:
        user = User(phone=phone, role=RoleEnum.buyer, is_verified=True)
        db.session.add(user)
        try:
            db.session.commit()
            logger.info("Created user %s for %s", user.id, sms.mask_phone(phone))
            return user
        except IntegrityError:
            # phone uniqueness decides concurrent first logins
            db.session.rollback()
            user = User.query.filter_by(phone=phone).one()

    if not user.is_verified:
        user.is_verified = True
        db.session.commit()
    return user
