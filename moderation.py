"""
Admin moderation actions.

Bulk actions are all-or-nothing: every id must exist (and, for users,
carry the expected role) or nothing is changed. The update itself is a
single set-based UPDATE so a failure cannot leave a half-applied batch.
"""
import logging

from errors import ForbiddenError, ValidationError
from models import (
    db, AuditLog, FraudReport, Product, ProductStatus, ReportStatus, RoleEnum,
    SellerStatus, User,
)
from notifications import (
    notify_best_effort, send_account_suspension_email, send_seller_approval_email,
    send_seller_rejection_email,
)

logger = logging.getLogger(__name__)

USER_TYPES = {"buyer": RoleEnum.buyer, "seller": RoleEnum.seller}

PRODUCT_ACTIONS = {
    "suspend": ProductStatus.suspended,
    "activate": ProductStatus.active,
    "delete": ProductStatus.deleted,
}

FRAUD_ACTIONS = ("suspend_product", "suspend_seller", "close_no_action")


def _audit(admin, action, reason, user_id=None, target=None):
    db.session.add(AuditLog(admin_id=admin.id, user_id=user_id, action=action, target=target, reason=reason))


def _role_for(user_type) -> RoleEnum:
    try:
        return USER_TYPES[str(user_type).lower()]
    except (KeyError, AttributeError):
        raise ValidationError("userType must be 'buyer' or 'seller'")


def _parse_ids(raw, label):
    if not isinstance(raw, list) or not raw:
        raise ValidationError(f"{label} must be a non-empty array")
    try:
        ids = {int(i) for i in raw}
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must contain numeric ids")
    return ids


def _user_update_for(action, role):
    if action == "suspend":
        return {User.is_suspended: True}
    if action == "unsuspend":
        return {User.is_suspended: False}
    if action in ("approve", "reject"):
        if role != RoleEnum.seller:
            raise ValidationError(f"{action.title()} action only available for sellers")
        status = SellerStatus.approved if action == "approve" else SellerStatus.rejected
        return {User.seller_status: status}
    raise ValidationError("Invalid action")


# =========================================================
# Users
# =========================================================
def bulk_user_action(admin, action, user_ids, user_type) -> int:
    role = _role_for(user_type)
    ids = _parse_ids(user_ids, "userIds")
    values = _user_update_for(action, role)

    matching = User.query.filter(User.id.in_(ids), User.role == role).count()
    if matching != len(ids):
        raise ValidationError("Some users not found or have incorrect role")

    updated = (
        User.query
        .filter(User.id.in_(ids), User.role == role)
        .update(values, synchronize_session=False)
    )
    _audit(
        admin,
        f"bulk_{action}_{role.value.lower()}",
        f"Bulk {action} applied to {updated} {role.value.lower()}(s).",
        target=",".join(str(i) for i in sorted(ids)),
    )
    db.session.commit()
    logger.info("Admin %s bulk %s on %s users", admin.id, action, updated)
    return updated


def user_action(admin, user, action, user_type) -> User:
    role = _role_for(user_type)
    if user.role != role:
        raise ValidationError(f"User is not a {role.value.lower()}")
    if user.id == admin.id:
        raise ForbiddenError("You can't moderate your own account")

    if action in ("suspend", "delete"):
        # accounts are never hard-deleted from moderation
        user.is_suspended = True
    elif action == "unsuspend":
        user.is_suspended = False
    else:
        raise ValidationError("Invalid action")

    _audit(admin, f"{action}_user", f"Admin applied '{action}' from the users panel.", user_id=user.id)
    db.session.commit()
    logger.info("Admin %s applied %s to user %s", admin.id, action, user.id)

    if action == "suspend":
        notify_best_effort(send_account_suspension_email, user)
    return user


def set_seller_status(admin, user, status: SellerStatus) -> User:
    if user.role != RoleEnum.seller:
        raise ValidationError("User is not a seller")

    user.seller_status = status
    action = "approve_seller" if status == SellerStatus.approved else "reject_seller"
    _audit(admin, action, f"Seller status set to {status.value}.", user_id=user.id)
    db.session.commit()
    logger.info("Admin %s set seller %s to %s", admin.id, user.id, status.value)

    if status == SellerStatus.approved:
        notify_best_effort(send_seller_approval_email, user)
    else:
        notify_best_effort(send_seller_rejection_email, user)
    return user


# =========================================================
# Products
# =========================================================
def bulk_product_action(admin, action, product_ids) -> int:
    if action not in PRODUCT_ACTIONS:
        raise ValidationError("Invalid action")
    ids = _parse_ids(product_ids, "productIds")

    found = Product.query.filter(Product.id.in_(ids)).count()
    if found != len(ids):
        raise ValidationError("Some products not found")

    updated = (
        Product.query
        .filter(Product.id.in_(ids))
        .update({Product.status: PRODUCT_ACTIONS[action]}, synchronize_session=False)
    )
    _audit(
        admin,
        f"bulk_{action}_product",
        f"Bulk {action} applied to {updated} product(s).",
        target=",".join(str(i) for i in sorted(ids)),
    )
    db.session.commit()
    logger.info("Admin %s bulk %s on %s products", admin.id, action, updated)
    return updated


def set_product_status(admin, product, status) -> Product:
    try:
        status = ProductStatus(status)
    except ValueError:
        raise ValidationError("Invalid status")

    product.status = status
    _audit(
        admin, "set_product_status", f"Product status set to {status.value}.",
        user_id=product.seller_id, target=f"product:{product.id}",
    )
    db.session.commit()
    return product


# =========================================================
# Fraud reports
# =========================================================
def resolve_fraud_report(admin, report: FraudReport, action, notes=None) -> str:
    if report.status == ReportStatus.closed:
        raise ValidationError("Report is already closed")
    if action not in FRAUD_ACTIONS:
        raise ValidationError("Invalid action")

    product = report.product
    if action == "suspend_product":
        product.status = ProductStatus.suspended
        message = "Product suspended and report closed"
    elif action == "suspend_seller":
        product.seller.is_suspended = True
        message = "Seller suspended and report closed"
    else:
        message = "Report closed with no action taken"

    report.status = ReportStatus.closed
    report.admin_action = action
    report.admin_notes = (notes or "").strip() or None

    _audit(
        admin, f"fraud_{action}", message,
        user_id=product.seller_id, target=f"fraud_report:{report.id}",
    )
    db.session.commit()
    logger.info("Admin %s resolved fraud report %s with %s", admin.id, report.id, action)
    return message
