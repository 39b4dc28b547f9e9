import logging

import stripe
from flask import current_app

from errors import ConflictError, DependencyError, ForbiddenError, NotFoundError, ValidationError
from models import db, Payment, PaymentPurpose, PaymentStatus, Product

logger = logging.getLogger(__name__)


def _configure_stripe() -> None:
    key = current_app.config.get("STRIPE_SECRET_KEY")
    if not key:
        raise DependencyError("Payments are not configured")
    stripe.api_key = key


def create_listing_fee_checkout(user):
    """Open a Stripe Checkout Session for the listing fee and record it as pending."""
    _configure_stripe()
    cfg = current_app.config
    amount = int(cfg["LISTING_FEE_CENTS"])
    currency = cfg["LISTING_FEE_CURRENCY"]
    base_url = cfg["APP_BASE_URL"].rstrip("/")

    try:
        checkout = stripe.checkout.Session.create(
            mode="payment",
            line_items=[{
                "price_data": {
                    "currency": currency,
                    "product_data": {"name": "Product listing fee"},
                    "unit_amount": amount,
                },
                "quantity": 1,
            }],
            success_url=f"{base_url}/post-product?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{base_url}/post-product?cancelled=1",
            client_reference_id=str(user.id),
            metadata={"user_id": str(user.id), "purpose": PaymentPurpose.listing_fee.value},
        )
    except stripe.StripeError as e:
        logger.error("Stripe checkout creation failed for user %s: %s", user.id, e)
        raise DependencyError("Failed to create payment order") from e

    payment = Payment(
        user_id=user.id,
        amount_cents=amount,
        currency=currency,
        purpose=PaymentPurpose.listing_fee,
        status=PaymentStatus.pending,
        provider_session_id=checkout.id,
    )
    db.session.add(payment)
    db.session.commit()
    return payment, checkout


def verify_listing_fee_payment(user, session_id: str) -> Payment:
    if not session_id:
        raise ValidationError("sessionId is required")

    payment = Payment.query.filter_by(provider_session_id=session_id).first()
    if payment is None:
        raise NotFoundError("Payment not found")
    if payment.user_id != user.id:
        raise ForbiddenError()
    if payment.status == PaymentStatus.completed:
        return payment

    _configure_stripe()
    try:
        checkout = stripe.checkout.Session.retrieve(session_id)
    except stripe.StripeError as e:
        logger.error("Stripe session lookup failed for payment %s: %s", payment.id, e)
        raise DependencyError("Payment verification failed") from e

    if getattr(checkout, "payment_status", None) == "paid":
        payment.status = PaymentStatus.completed
        payment.provider_payment_id = getattr(checkout, "payment_intent", None)
    else:
        payment.status = PaymentStatus.failed
    db.session.commit()

    logger.info("Payment %s for user %s is %s", payment.id, user.id, payment.status.value)
    return payment


def claim_listing_payment(user, payment_id) -> Payment:
    """Check that a completed listing-fee payment can be attached to a new product."""
    try:
        payment_id = int(payment_id)
    except (TypeError, ValueError):
        raise ValidationError("Invalid payment ID")

    payment = db.session.get(Payment, payment_id)
    if payment is None or payment.user_id != user.id:
        raise NotFoundError("Payment not found")
    if payment.status != PaymentStatus.completed:
        raise ValidationError("Payment has not been completed")
    if Product.query.filter_by(payment_id=payment.id).first() is not None:
        raise ConflictError("Payment has already been used")
    return payment
