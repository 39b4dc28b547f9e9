import enum
from datetime import datetime

from flask_login import UserMixin
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.sql import func

db = SQLAlchemy()


# =========================================================
# Enums
# =========================================================
class RoleEnum(str, enum.Enum):
    buyer = "BUYER"
    seller = "SELLER"
    admin = "ADMIN"


class SellerStatus(str, enum.Enum):
    pending = "PENDING"
    approved = "APPROVED"
    rejected = "REJECTED"


class OTPPurpose(str, enum.Enum):
    login = "LOGIN"
    phone_change = "PHONE_CHANGE"


class ProductStatus(str, enum.Enum):
    active = "ACTIVE"
    sold = "SOLD"
    suspended = "SUSPENDED"
    deleted = "DELETED"


class FraudReason(str, enum.Enum):
    fake_product = "fake_product"
    fraud_seller = "fraud_seller"
    wrong_information = "wrong_information"
    overpriced_product = "overpriced_product"
    scam_misleading = "scam_misleading"
    other = "other"


class ReportStatus(str, enum.Enum):
    open = "OPEN"
    closed = "CLOSED"


class TicketStatus(str, enum.Enum):
    open = "OPEN"
    in_progress = "IN_PROGRESS"
    resolved = "RESOLVED"
    closed = "CLOSED"


class TicketPriority(str, enum.Enum):
    low = "Low"
    medium = "Medium"
    high = "High"


class PaymentStatus(str, enum.Enum):
    pending = "PENDING"
    completed = "COMPLETED"
    failed = "FAILED"


class PaymentPurpose(str, enum.Enum):
    listing_fee = "LISTING_FEE"


PRODUCT_CONDITIONS = ("New", "Used")

TICKET_CATEGORIES = (
    "Account Issues",
    "Payment Problems",
    "Verification Issues",
    "Product Listing Issues",
    "Chat Problems",
    "Report Fraud",
    "Other",
)


def _iso(dt):
    return dt.isoformat() if dt else None


# =========================================================
# Users / verification
# =========================================================
class User(UserMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)

    # Identity: the phone number is the only login key
    phone = db.Column(db.String(20), unique=True, nullable=False, index=True)

    # Profile
    name = db.Column(db.String(150), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(100), nullable=True)
    state = db.Column(db.String(100), nullable=True)
    bio = db.Column(db.Text, nullable=True)
    profile_photo = db.Column(db.String(255), nullable=True)
    buyer_id_url = db.Column(db.String(255), nullable=True)

    # Auth / role
    role = db.Column(db.Enum(RoleEnum), nullable=False, default=RoleEnum.buyer)
    is_verified = db.Column(db.Boolean, nullable=False, default=False)
    is_suspended = db.Column(db.Boolean, nullable=False, default=False)

    # Seller onboarding
    seller_status = db.Column(db.Enum(SellerStatus), nullable=True)
    seller_details = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def is_active(self):
        return not self.is_suspended

    @property
    def is_admin(self) -> bool:
        return self.role == RoleEnum.admin

    @property
    def is_approved_seller(self) -> bool:
        return self.role == RoleEnum.seller and self.seller_status == SellerStatus.approved

    def to_identity_dict(self) -> dict:
        return {
            "id": self.id,
            "phone": self.phone,
            "role": self.role.value,
            "isVerified": self.is_verified,
        }

    def to_dict(self) -> dict:
        data = self.to_identity_dict()
        data.update(
            name=self.name,
            email=self.email,
            city=self.city,
            state=self.state,
            bio=self.bio,
            profilePhoto=self.profile_photo,
            buyerIdUrl=self.buyer_id_url,
            isSuspended=self.is_suspended,
            sellerStatus=self.seller_status.value if self.seller_status else None,
            createdAt=_iso(self.created_at),
        )
        return data

    def to_public_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "city": self.city, "state": self.state}

    def __repr__(self):
        return f"<User id={self.id} phone={self.phone} role={self.role.value}>"


class VerificationCode(db.Model):
    __tablename__ = "verification_code"

    id = db.Column(db.Integer, primary_key=True)
    phone = db.Column(db.String(20), unique=True, nullable=False, index=True)
    code = db.Column(db.String(6), nullable=False)
    purpose = db.Column(db.Enum(OTPPurpose), nullable=False, default=OTPPurpose.login)
    expires_at = db.Column(db.DateTime, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def is_expired(self, now=None) -> bool:
        return (now or datetime.utcnow()) >= self.expires_at

    def __repr__(self):
        return f"<VerificationCode phone={self.phone} purpose={self.purpose.value}>"


# =========================================================
# Catalogue
# =========================================================
class Category(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    slug = db.Column(db.String(120), unique=True, nullable=False, index=True)
    parent_id = db.Column(db.Integer, db.ForeignKey("category.id"), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    parent = db.relationship("Category", remote_side=[id], backref="subcategories")

    def to_dict(self, with_children: bool = False) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "parentId": self.parent_id,
        }
        if with_children:
            data["subcategories"] = [
                c.to_dict() for c in sorted(self.subcategories, key=lambda c: c.name) if c.is_active
            ]
        return data


class Product(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)

    title = db.Column(db.String(70), nullable=False)
    description = db.Column(db.Text, nullable=False)
    price = db.Column(db.Numeric(12, 2), nullable=False)
    condition = db.Column(db.String(10), nullable=False)

    category_id = db.Column(db.Integer, db.ForeignKey("category.id"), nullable=False)
    subcategory_id = db.Column(db.Integer, db.ForeignKey("category.id"), nullable=True)

    images = db.Column(db.JSON, nullable=False, default=list)
    city = db.Column(db.String(100), nullable=False)
    state = db.Column(db.String(100), nullable=False)
    pincode = db.Column(db.String(10), nullable=False)

    status = db.Column(db.Enum(ProductStatus), nullable=False, default=ProductStatus.active, index=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payment.id"), nullable=True, unique=True)
    views = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    seller = db.relationship("User", backref=db.backref("products", lazy="dynamic"))
    category = db.relationship("Category", foreign_keys=[category_id])
    subcategory = db.relationship("Category", foreign_keys=[subcategory_id])

    def to_dict(self, with_seller: bool = True) -> dict:
        data = {
            "id": self.id,
            "sellerId": self.seller_id,
            "title": self.title,
            "description": self.description,
            "price": float(self.price),
            "condition": self.condition,
            "category": self.category.name if self.category else None,
            "categoryId": self.category_id,
            "subcategory": self.subcategory.name if self.subcategory else None,
            "subcategoryId": self.subcategory_id,
            "images": list(self.images or []),
            "city": self.city,
            "state": self.state,
            "pincode": self.pincode,
            "status": self.status.value,
            "views": self.views,
            "createdAt": _iso(self.created_at),
        }
        if with_seller and self.seller is not None:
            data["seller"] = self.seller.to_public_dict()
        return data

    def __repr__(self):
        return f"<Product id={self.id} seller={self.seller_id} status={self.status.value}>"


class Favorite(db.Model):
    __table_args__ = (db.UniqueConstraint("user_id", "product_id", name="uq_favorite_user_product"),)

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("product.id"), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    product = db.relationship("Product")


# =========================================================
# Chat
# =========================================================
class Chat(db.Model):
    __table_args__ = (db.UniqueConstraint("product_id", "buyer_id", name="uq_chat_product_buyer"),)

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("product.id"), nullable=False)
    buyer_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)

    last_message = db.Column(db.String(100), nullable=True)
    last_activity = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    buyer_unread = db.Column(db.Integer, nullable=False, default=0)
    seller_unread = db.Column(db.Integer, nullable=False, default=0)
    buyer_blocked = db.Column(db.Boolean, nullable=False, default=False)
    seller_blocked = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    product = db.relationship("Product")
    buyer = db.relationship("User", foreign_keys=[buyer_id])
    seller = db.relationship("User", foreign_keys=[seller_id])
    messages = db.relationship(
        "ChatMessage",
        backref="chat",
        lazy="dynamic",
        order_by="ChatMessage.id",
    )

    def is_participant(self, user_id: int) -> bool:
        return user_id in (self.buyer_id, self.seller_id)

    def to_dict(self, viewer_id: int) -> dict:
        is_buyer = viewer_id == self.buyer_id
        return {
            "id": self.id,
            "productId": self.product_id,
            "product": {
                "title": self.product.title,
                "images": list(self.product.images or []),
                "price": float(self.product.price),
            } if self.product else None,
            "buyer": self.buyer.to_public_dict(),
            "seller": self.seller.to_public_dict(),
            "lastMessage": self.last_message,
            "lastActivity": _iso(self.last_activity),
            "unread": self.buyer_unread if is_buyer else self.seller_unread,
            "isBlocked": self.seller_blocked if is_buyer else self.buyer_blocked,
            "blockedByMe": self.buyer_blocked if is_buyer else self.seller_blocked,
        }


class ChatMessage(db.Model):
    __tablename__ = "chat_message"

    id = db.Column(db.Integer, primary_key=True)
    chat_id = db.Column(db.Integer, db.ForeignKey("chat.id"), nullable=False, index=True)
    sender_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    body = db.Column(db.Text, nullable=False)
    image_url = db.Column(db.String(255), nullable=True)
    is_read = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "senderId": self.sender_id,
            "message": self.body,
            "imageUrl": self.image_url,
            "isRead": self.is_read,
            "timestamp": _iso(self.created_at),
        }


# =========================================================
# Fraud reports
# =========================================================
class FraudReport(db.Model):
    __tablename__ = "fraud_report"
    __table_args__ = (db.UniqueConstraint("reporter_id", "product_id", name="uq_report_reporter_product"),)

    id = db.Column(db.Integer, primary_key=True)
    reporter_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("product.id"), nullable=False)
    reason = db.Column(db.Enum(FraudReason), nullable=False)
    description = db.Column(db.Text, nullable=True)
    screenshot = db.Column(db.String(255), nullable=True)

    status = db.Column(db.Enum(ReportStatus), nullable=False, default=ReportStatus.open)
    admin_action = db.Column(db.String(40), nullable=True)
    admin_notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    reporter = db.relationship("User")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "reporterId": self.reporter_id,
            "productId": self.product_id,
            "productTitle": self.product.title if self.product else None,
            "reason": self.reason.value,
            "description": self.description,
            "screenshot": self.screenshot,
            "status": self.status.value,
            "adminAction": self.admin_action,
            "adminNotes": self.admin_notes,
            "createdAt": _iso(self.created_at),
        }


# =========================================================
# Support tickets
# =========================================================
class SupportTicket(db.Model):
    __tablename__ = "support_ticket"

    id = db.Column(db.Integer, primary_key=True)
    ticket_number = db.Column(db.String(24), unique=True, nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)

    email = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(40), nullable=False)
    description = db.Column(db.Text, nullable=False)
    screenshot = db.Column(db.String(255), nullable=True)

    status = db.Column(db.Enum(TicketStatus), nullable=False, default=TicketStatus.open, index=True)
    priority = db.Column(db.Enum(TicketPriority), nullable=False, default=TicketPriority.medium)

    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, server_default=func.now(), onupdate=func.now())

    user = db.relationship("User")
    replies = db.relationship(
        "TicketReply",
        backref="ticket",
        lazy="dynamic",
        order_by="TicketReply.id",
    )

    @property
    def accepts_replies(self) -> bool:
        return self.status not in (TicketStatus.resolved, TicketStatus.closed)

    def to_dict(self, with_replies: bool = False, include_notes: bool = False) -> dict:
        data = {
            "id": self.id,
            "ticketNumber": self.ticket_number,
            "userId": self.user_id,
            "email": self.email,
            "category": self.category,
            "description": self.description,
            "screenshot": self.screenshot,
            "status": self.status.value,
            "priority": self.priority.value,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }
        if with_replies:
            data["replies"] = [r.to_dict(include_notes=include_notes) for r in self.replies]
        return data

    def __repr__(self):
        return f"<SupportTicket id={self.id} user={self.user_id} status={self.status.value}>"


class TicketReply(db.Model):
    __tablename__ = "ticket_reply"

    id = db.Column(db.Integer, primary_key=True)
    ticket_id = db.Column(db.Integer, db.ForeignKey("support_ticket.id"), nullable=False, index=True)
    author_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    is_admin = db.Column(db.Boolean, nullable=False, default=False)
    body = db.Column(db.Text, nullable=False)
    admin_notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    author = db.relationship("User")

    def to_dict(self, include_notes: bool = False) -> dict:
        data = {
            "id": self.id,
            "content": self.body,
            "isAdmin": self.is_admin,
            "createdAt": _iso(self.created_at),
        }
        if include_notes:
            data["adminNotes"] = self.admin_notes
        return data


# =========================================================
# Payments / audit
# =========================================================
class Payment(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(8), nullable=False)
    purpose = db.Column(db.Enum(PaymentPurpose), nullable=False, default=PaymentPurpose.listing_fee)
    status = db.Column(db.Enum(PaymentStatus), nullable=False, default=PaymentStatus.pending)

    provider_session_id = db.Column(db.String(255), unique=True, nullable=True)
    provider_payment_id = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "amount": self.amount_cents,
            "currency": self.currency,
            "purpose": self.purpose.value,
            "status": self.status.value,
            "createdAt": _iso(self.created_at),
        }


class AuditLog(db.Model):
    __tablename__ = "audit_log"

    id = db.Column(db.Integer, primary_key=True)
    admin_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    action = db.Column(db.String(80), nullable=False)
    target = db.Column(db.String(120), nullable=True)
    reason = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    admin = db.relationship("User", foreign_keys=[admin_id])
    user = db.relationship("User", foreign_keys=[user_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "adminId": self.admin_id,
            "userId": self.user_id,
            "action": self.action,
            "target": self.target,
            "reason": self.reason,
            "createdAt": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<AuditLog admin={self.admin_id} user={self.user_id} action={self.action}>"
