from flask import Flask, request, jsonify, send_from_directory, g
from flask_wtf import CSRFProtect
from flask_wtf.csrf import CSRFError, generate_csrf
from werkzeug.exceptions import HTTPException
from werkzeug.utils import secure_filename
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from dotenv import load_dotenv
from decimal import Decimal, InvalidOperation
from datetime import datetime, timedelta
import logging
import os
import pathlib
import re
import secrets
import uuid

import otp
import payments
import moderation
from accounts import delete_account
from auth import login_manager, login_required, admin_required, public, establish_session, end_session
from errors import (
    APIError, ConflictError, DependencyError, ForbiddenError, NotFoundError,
    RateLimitError, ValidationError,
)
from models import (
    db, AuditLog, Category, Chat, ChatMessage, Favorite, FraudReason, FraudReport,
    OTPPurpose, Payment, PaymentStatus, Product, ProductStatus, PRODUCT_CONDITIONS,
    ReportStatus, RoleEnum, SellerStatus, SupportTicket, TicketPriority, TicketReply,
    TicketStatus, TICKET_CATEGORIES, User,
)
from notifications import notify_best_effort, send_support_reply_email
from rate_limit import MemoryCounterStore, RateLimiter
from sms import mask_phone

load_dotenv()

MAX_UPLOAD_BYTES = 5 * 1024 * 1024  # per file
MAX_PRODUCT_IMAGES = 10
MAX_TITLE_LENGTH = 70
MAX_DESCRIPTION_LENGTH = 5000
MAX_REPLY_LENGTH = 1000
MAX_PAGE_SIZE = 100

IMAGE_EXTS = {"png", "jpg", "jpeg", "webp"}
DOCUMENT_EXTS = {"png", "jpg", "jpeg", "pdf"}

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PINCODE_RE = re.compile(r"^\d{6}$")

# =========================================================
# App / DB setup
# =========================================================
BASE_DIR = os.path.abspath(os.path.dirname(__file__))

# ------------------------------------------------------
# Environment / security config
# APP_ENV: "dev" or "prod" (default "dev")
# ------------------------------------------------------
APP_ENV = os.getenv("APP_ENV", "dev").lower()
IS_DEV = APP_ENV != "prod"

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

app = Flask(__name__)

# SECRET_KEY: MUST be set via env in production
app.config["SECRET_KEY"] = os.getenv("SECRET_KEY", "change-me")

if not IS_DEV and app.config["SECRET_KEY"] == "change-me":
    raise RuntimeError(
        "SECURITY ERROR: SECRET_KEY must be set via environment variable in production."
    )

# Session / cookie hardening
app.config.update(
    IS_DEV=IS_DEV,
    SESSION_COOKIE_HTTPONLY=True,
    SESSION_COOKIE_SAMESITE="Lax",
    SESSION_COOKIE_SECURE=not IS_DEV,
    REMEMBER_COOKIE_HTTPONLY=True,
    REMEMBER_COOKIE_SECURE=not IS_DEV,
    PERMANENT_SESSION_LIFETIME=timedelta(days=7),
    MAX_CONTENT_LENGTH=(MAX_PRODUCT_IMAGES + 2) * MAX_UPLOAD_BYTES,
)
app.config.setdefault("WTF_CSRF_TIME_LIMIT", None)

os.makedirs(os.path.join(BASE_DIR, "instance"), exist_ok=True)
database_url = os.getenv(
    "DATABASE_URL", f"sqlite:///{os.path.join(BASE_DIR, 'instance', 'app.db')}"
)
if database_url.startswith("postgres://"):
    database_url = database_url.replace("postgres://", "postgresql://", 1)
app.config["SQLALCHEMY_DATABASE_URI"] = database_url
app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

# File uploads
UPLOAD_ROOT = os.getenv("UPLOAD_FOLDER", os.path.join(BASE_DIR, "uploads"))
os.makedirs(UPLOAD_ROOT, exist_ok=True)
app.config["UPLOAD_FOLDER"] = UPLOAD_ROOT

# Verification codes
app.config["OTP_TTL_SECONDS"] = int(os.getenv("OTP_TTL_SECONDS", "300"))
OTP_MAX_REQUESTS = int(os.getenv("OTP_MAX_REQUESTS", "3"))
OTP_WINDOW_SECONDS = int(os.getenv("OTP_WINDOW_SECONDS", str(10 * 60)))
OTP_MAX_ATTEMPTS = int(os.getenv("OTP_MAX_ATTEMPTS", "5"))

# Chat / reports
CHAT_MAX_MESSAGES = int(os.getenv("CHAT_MAX_MESSAGES", "10"))
CHAT_WINDOW_SECONDS = int(os.getenv("CHAT_WINDOW_SECONDS", "60"))
FRAUD_REPORTS_PER_DAY = int(os.getenv("FRAUD_REPORTS_PER_DAY", "5"))

# Providers
app.config.update(
    TWILIO_ACCOUNT_SID=os.getenv("TWILIO_ACCOUNT_SID"),
    TWILIO_AUTH_TOKEN=os.getenv("TWILIO_AUTH_TOKEN"),
    TWILIO_PHONE_NUMBER=os.getenv("TWILIO_PHONE_NUMBER"),
    STRIPE_SECRET_KEY=os.getenv("STRIPE_SECRET_KEY"),
    STRIPE_PUBLISHABLE_KEY=os.getenv("STRIPE_PUBLISHABLE_KEY"),
    APP_BASE_URL=os.getenv("APP_BASE_URL", "http://localhost:5000"),
    LISTING_FEE_CENTS=int(os.getenv("LISTING_FEE_CENTS", "2500")),
    LISTING_FEE_CURRENCY=os.getenv("LISTING_FEE_CURRENCY", "inr").lower(),
    SMTP_HOST=os.getenv("SMTP_HOST"),
    SMTP_PORT=os.getenv("SMTP_PORT", "465"),
    SMTP_USERNAME=os.getenv("SMTP_USERNAME"),
    SMTP_PASSWORD=os.getenv("SMTP_PASSWORD"),
    MAIL_FROM=os.getenv("MAIL_FROM"),
)

db.init_app(app)
login_manager.init_app(app)

# ------------------------------------------------------
# CSRF protection
# Browser clients read a token from /api/csrf-token and send it
# back in the X-CSRFToken header.
# ------------------------------------------------------
csrf = CSRFProtect(app)

# ------------------------------------------------------
# Rate limiting (process-local; see rate_limit.py)
# ------------------------------------------------------
counter_store = MemoryCounterStore()
otp_limiter = RateLimiter(
    counter_store, OTP_MAX_REQUESTS, OTP_WINDOW_SECONDS,
    prefix="otp", message="Too many requests. Try again later.",
)
otp_attempt_limiter = RateLimiter(
    counter_store, OTP_MAX_ATTEMPTS, OTP_WINDOW_SECONDS,
    prefix="otp-fail", message="Too many failed attempts. Please request a new OTP.",
)
chat_limiter = RateLimiter(
    counter_store, CHAT_MAX_MESSAGES, CHAT_WINDOW_SECONDS,
    prefix="chat", message="Too many messages. Please wait before sending another message.",
)


# =========================================================
# Error handlers
# =========================================================
@app.errorhandler(APIError)
def handle_api_error(e):
    if isinstance(e, DependencyError):
        app.logger.error("Dependency failure on %s %s: %s", request.method, request.path, e.message)
    resp = jsonify(e.to_dict())
    resp.status_code = e.status_code
    if isinstance(e, RateLimitError):
        resp.headers["Retry-After"] = str(e.retry_after)
    return resp


@app.errorhandler(CSRFError)
def handle_csrf_error(e):
    msg = e.description or "Security error: please refresh the page and try again."
    return jsonify({"error": msg}), 400


@app.errorhandler(HTTPException)
def handle_http_error(e):
    return jsonify({"error": e.name}), e.code


@app.errorhandler(Exception)
def handle_unexpected_error(e):
    db.session.rollback()
    app.logger.exception("Unhandled error on %s %s", request.method, request.path)
    return jsonify({"error": "Internal server error"}), 500


# =========================================================
# Helpers
# =========================================================
def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _payload() -> dict:
    """JSON body, or form fields for multipart requests."""
    if request.is_json:
        return _json_body()
    return request.form.to_dict()


def _text(data, key, max_length=None) -> str:
    value = data.get(key)
    if value is None:
        return ""
    value = str(value).strip()
    if max_length is not None:
        value = value[:max_length]
    return value


def _int_field(value, label) -> int:
    if value is None or value == "":
        raise ValidationError(f"{label} is required")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {label}")


def _bool_arg(name):
    raw = (request.args.get(name) or "").strip().lower()
    if raw in ("1", "true", "yes"):
        return True
    if raw in ("0", "false", "no"):
        return False
    return None


def _get_or_404(model, obj_id, message="Not found"):
    obj = db.session.get(model, obj_id)
    if obj is None:
        raise NotFoundError(message)
    return obj


def _page_args(default_size=20):
    page = max(request.args.get("page", 1, type=int) or 1, 1)
    size = request.args.get("limit", default_size, type=int) or default_size
    return page, min(max(size, 1), MAX_PAGE_SIZE)


def _paginate(query, default_size=20):
    page, per_page = _page_args(default_size)
    pagination = query.paginate(page=page, per_page=per_page, error_out=False)
    meta = {
        "page": page,
        "pageSize": per_page,
        "total": pagination.total,
        "totalPages": pagination.pages,
    }
    return pagination.items, meta


def _ext_ok(filename, allowed):
    return "." in filename and filename.rsplit(".", 1)[1].lower() in allowed


def _file_size(fs) -> int:
    stream = fs.stream
    pos = stream.tell()
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(pos)
    return size


def _check_upload(fs, allowed, label):
    if not _ext_ok(fs.filename, allowed):
        raise ValidationError(f"{label} must be one of: {', '.join(sorted(allowed))}")
    if _file_size(fs) > MAX_UPLOAD_BYTES:
        raise ValidationError(f"{label} must be less than 5MB")


def _save_upload(fs, subdir) -> str:
    ext = fs.filename.rsplit(".", 1)[1].lower()
    fname = secure_filename(f"{g.user.id}-{uuid.uuid4().hex}.{ext}")
    folder = os.path.join(app.config["UPLOAD_FOLDER"], subdir)
    os.makedirs(folder, exist_ok=True)
    try:
        fs.save(os.path.join(folder, fname))
    except OSError as e:
        raise DependencyError("Failed to store upload") from e
    return f"{subdir}/{fname}"


def _media_url(stored: str) -> str:
    return f"/uploads/{stored}"


def _safe_remove(stored_filename) -> None:
    if not stored_filename:
        return
    try:
        pathlib.Path(os.path.join(app.config["UPLOAD_FOLDER"], stored_filename)).unlink(
            missing_ok=True
        )
    except OSError:
        app.logger.warning("Could not remove upload %s", stored_filename)


def _optional_upload(field, allowed, subdir, label):
    fs = request.files.get(field)
    if not fs or not fs.filename:
        return None
    _check_upload(fs, allowed, label)
    return _media_url(_save_upload(fs, subdir))


def slugify(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")


def _resolve_category(raw, parent=None, label="category"):
    raw = (str(raw).strip() if raw is not None else "")
    if not raw:
        raise ValidationError(f"{label.capitalize()} is required")

    query = Category.query.filter(Category.is_active.is_(True))
    if raw.isdigit():
        category = query.filter(Category.id == int(raw)).first()
    else:
        category = query.filter(or_(Category.slug == raw, func.lower(Category.name) == raw.lower())).first()

    if category is None:
        raise ValidationError(f"Invalid {label}")
    if parent is None and category.parent_id is not None:
        raise ValidationError(f"Invalid {label}")
    if parent is not None and category.parent_id != parent.id:
        raise ValidationError(f"Invalid {label}")
    return category


def _parse_price(raw) -> Decimal:
    try:
        price = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError("Invalid price")
    if not price.is_finite() or price <= 0:
        raise ValidationError("Invalid price")
    return price.quantize(Decimal("0.01"))


def _new_ticket_number() -> str:
    day = datetime.utcnow().strftime("%Y%m%d")
    for _ in range(10):
        number = f"TKT-{day}-{10000 + secrets.randbelow(90000)}"
        if not SupportTicket.query.filter_by(ticket_number=number).first():
            return number
    raise APIError("Failed to create support ticket")


def _visible_to_viewer(product: Product) -> bool:
    if product.status == ProductStatus.active:
        return True
    user = g.user
    return user is not None and (user.id == product.seller_id or user.role == RoleEnum.admin)


DEFAULT_CATEGORIES = {
    "Electronics": ["Mobiles", "Laptops", "Cameras", "Accessories"],
    "Vehicles": ["Cars", "Motorcycles", "Bicycles"],
    "Furniture": ["Sofas", "Beds", "Tables"],
    "Fashion": ["Men", "Women", "Kids"],
    "Books & Hobbies": ["Books", "Sports", "Musical Instruments"],
    "Home Appliances": ["Kitchen", "Cooling", "Laundry"],
}


def seed_categories() -> int:
    created = 0
    for name, children in DEFAULT_CATEGORIES.items():
        parent = Category.query.filter_by(slug=slugify(name)).first()
        if parent is None:
            parent = Category(name=name, slug=slugify(name))
            db.session.add(parent)
            db.session.flush()
            created += 1
        for child in children:
            slug = f"{parent.slug}-{slugify(child)}"
            if not Category.query.filter_by(slug=slug).first():
                db.session.add(Category(name=child, slug=slug, parent_id=parent.id))
                created += 1
    db.session.commit()
    return created


# =========================================================
# Health / CSRF / media
# =========================================================
@app.route("/health")
def health():
    return jsonify({"ok": True, "env": APP_ENV})


@app.route("/api/csrf-token")
def csrf_token():
    return jsonify({"csrfToken": generate_csrf()})


@app.route("/uploads/<path:filename>")
def media_file(filename):
    return send_from_directory(app.config["UPLOAD_FOLDER"], filename)


# =========================================================
# Auth (phone + one-time code)
# =========================================================
def _verify_code_capped(phone, code, purpose):
    """Verify a code; repeated wrong guesses for one phone burn the live code."""
    try:
        otp.verify_code(phone, code, purpose)
    except otp.OTPMismatch:
        key = otp.normalize_phone(phone)
        result = otp_attempt_limiter.hit(key)
        if not result.allowed:
            otp.delete_code(key)
            app.logger.warning("Code for %s discarded after repeated wrong attempts", mask_phone(key))
            raise RateLimitError(otp_attempt_limiter.message, retry_after=result.retry_after)
        raise
    otp_attempt_limiter.reset(otp.normalize_phone(phone))


@app.route("/api/auth/send-otp", methods=["POST"])
def send_otp():
    data = _json_body()
    phone = otp.normalize_phone(data.get("phone"))

    otp_limiter.check(phone)
    otp.issue_code(phone, OTPPurpose.login)
    return jsonify({"message": "OTP sent successfully"})


@app.route("/api/auth/verify-otp", methods=["POST"])
def verify_otp():
    data = _json_body()
    phone = data.get("phone")
    code = data.get("code") or data.get("otp")

    _verify_code_capped(phone, code, OTPPurpose.login)
    user = otp.resolve_identity(otp.normalize_phone(phone))
    establish_session(user)

    app.logger.info("User %s signed in", user.id)
    return jsonify({
        "message": "OTP verified successfully",
        "user": user.to_identity_dict(),
    })


@app.route("/api/auth/logout", methods=["POST"])
@login_required
def logout():
    end_session()
    return jsonify({"message": "Logged out"})


@app.route("/api/auth/session")
@public
def current_session():
    if g.user is None:
        return jsonify({"user": None})
    return jsonify({"user": g.user.to_dict()})


# =========================================================
# Profile
# =========================================================
@app.route("/api/profile", methods=["GET"])
@login_required
def profile():
    return jsonify({"profile": g.user.to_dict()})


@app.route("/api/profile", methods=["PUT"])
@login_required
def update_profile():
    data = _json_body()
    name = _text(data, "name", 150)
    if not name:
        raise ValidationError("Name is required")

    email = _text(data, "email", 255)
    if email and not EMAIL_RE.match(email):
        raise ValidationError("Invalid email format")

    user = g.user
    user.name = name
    user.email = email or None
    user.city = _text(data, "city", 100) or None
    user.state = _text(data, "state", 100) or None
    user.bio = _text(data, "bio", 1000) or None
    db.session.commit()

    return jsonify({"message": "Profile updated successfully", "profile": user.to_dict()})


@app.route("/api/profile/photo", methods=["POST"])
@login_required
def upload_profile_photo():
    fs = request.files.get("photo")
    if not fs or not fs.filename:
        raise ValidationError("Photo is required")
    _check_upload(fs, IMAGE_EXTS, "Photo")

    user = g.user
    old = user.profile_photo
    user.profile_photo = _media_url(_save_upload(fs, "profile-photos"))
    db.session.commit()
    if old and old.startswith("/uploads/"):
        _safe_remove(old[len("/uploads/"):])

    return jsonify({"message": "Photo updated", "profilePhoto": user.profile_photo})


@app.route("/api/profile/phone/send-otp", methods=["POST"])
@login_required
def send_phone_change_otp():
    phone = otp.normalize_phone(_json_body().get("phone"))
    if phone == g.user.phone:
        raise ValidationError("This is already your phone number")
    if User.query.filter_by(phone=phone).first():
        raise ConflictError("Phone number already in use")

    otp_limiter.check(phone)
    otp.issue_code(phone, OTPPurpose.phone_change)
    return jsonify({"message": "OTP sent successfully"})


@app.route("/api/profile/phone/verify", methods=["POST"])
@login_required
def verify_phone_change():
    data = _json_body()
    phone = data.get("phone")
    _verify_code_capped(phone, data.get("code") or data.get("otp"), OTPPurpose.phone_change)

    user = g.user
    user.phone = otp.normalize_phone(phone)
    user.is_verified = True
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Phone number already in use")

    return jsonify({"message": "Phone number updated", "profile": user.to_dict()})


@app.route("/api/profile", methods=["DELETE"])
@login_required
def delete_profile():
    user_id = g.user.id
    try:
        delete_account(g.user)
    except SQLAlchemyError:
        raise APIError("Failed to delete account")
    end_session()

    app.logger.info("Account %s deleted by its owner", user_id)
    return jsonify({"message": "Account deleted successfully"})


# =========================================================
# Seller onboarding
# =========================================================
@app.route("/api/seller/apply", methods=["POST"])
@login_required
def seller_apply():
    user = g.user
    if user.role == RoleEnum.admin:
        raise ValidationError("Admins cannot apply as sellers")
    if user.role == RoleEnum.seller and user.seller_status in (SellerStatus.pending, SellerStatus.approved):
        raise ConflictError("Application already submitted")

    form = request.form
    fields = {k: _text(form, k, 255) for k in ("name", "email", "address", "city", "state", "pincode")}
    if not all(fields.values()):
        raise ValidationError("All required fields must be filled")
    if not EMAIL_RE.match(fields["email"]):
        raise ValidationError("Invalid email format")
    if not PINCODE_RE.match(fields["pincode"]):
        raise ValidationError("Invalid pincode")

    gov_id = request.files.get("governmentId")
    if not gov_id or not gov_id.filename:
        raise ValidationError("Government ID is required")
    _check_upload(gov_id, DOCUMENT_EXTS, "Government ID")
    selfie = request.files.get("selfieWithId")
    if selfie and selfie.filename:
        _check_upload(selfie, IMAGE_EXTS, "Selfie")

    gov_id_url = _media_url(_save_upload(gov_id, "seller-documents"))
    selfie_url = _media_url(_save_upload(selfie, "seller-documents")) if selfie and selfie.filename else None

    user.role = RoleEnum.seller
    user.seller_status = SellerStatus.pending
    user.seller_details = dict(fields, govIdUrl=gov_id_url, selfieUrl=selfie_url)
    user.name = fields["name"]
    db.session.commit()

    app.logger.info("User %s applied to become a seller", user.id)
    return jsonify({"message": "Application submitted successfully", "status": SellerStatus.pending.value})


@app.route("/api/seller/status")
@login_required
def seller_status():
    user = g.user
    return jsonify({
        "role": user.role.value,
        "sellerStatus": user.seller_status.value if user.seller_status else None,
    })


# =========================================================
# Buyer ID verification
# =========================================================
@app.route("/api/buyer/verify-id", methods=["POST"])
@login_required
def buyer_verify_id():
    fs = request.files.get("file")
    if not fs or not fs.filename:
        raise ValidationError("No file provided")
    _check_upload(fs, DOCUMENT_EXTS, "ID document")

    user = g.user
    old = user.buyer_id_url
    user.buyer_id_url = _media_url(_save_upload(fs, "buyer-ids"))
    user.is_verified = True
    db.session.commit()
    if old and old.startswith("/uploads/"):
        _safe_remove(old[len("/uploads/"):])

    app.logger.info("Buyer %s uploaded an ID document", user.id)
    return jsonify({"message": "Verification successful", "url": user.buyer_id_url})


@app.route("/api/buyer/verification-status")
@public
def buyer_verification_status():
    user = g.user
    if user is None:
        return jsonify({"isAuthenticated": False, "isVerified": False, "needsVerification": False})
    return jsonify({
        "isAuthenticated": True,
        "isVerified": user.is_verified,
        "needsVerification": not user.is_verified and user.role == RoleEnum.buyer,
    })


# =========================================================
# Categories
# =========================================================
@app.route("/api/categories")
def list_categories():
    roots = (
        Category.query
        .filter(Category.parent_id.is_(None), Category.is_active.is_(True))
        .order_by(Category.name.asc())
        .all()
    )
    return jsonify({"categories": [c.to_dict(with_children=True) for c in roots]})


@app.route("/api/admin/categories", methods=["POST"])
@admin_required
def admin_create_category():
    data = _json_body()
    name = _text(data, "name", 100)
    if not name:
        raise ValidationError("Name is required")

    parent = None
    if data.get("parentId") not in (None, ""):
        parent = _get_or_404(Category, _int_field(data.get("parentId"), "parentId"), "Parent category not found")

    slug = slugify(name) if parent is None else f"{parent.slug}-{slugify(name)}"
    if not slug:
        raise ValidationError("Invalid name")

    existing = Category.query.filter_by(slug=slug).first()
    if existing is not None:
        if existing.is_active:
            raise ConflictError("Category already exists")
        existing.is_active = True
        category = existing
    else:
        category = Category(name=name, slug=slug, parent_id=parent.id if parent else None)
        db.session.add(category)
    db.session.commit()

    return jsonify({"message": "Category saved", "category": category.to_dict()}), 201


@app.route("/api/admin/categories/<int:category_id>", methods=["DELETE"])
@admin_required
def admin_delete_category(category_id):
    category = _get_or_404(Category, category_id, "Category not found")
    # products keep pointing at it, so it is only hidden
    category.is_active = False
    for child in category.subcategories:
        child.is_active = False
    db.session.commit()
    return jsonify({"message": "Category removed"})


# =========================================================
# Products
# =========================================================
@app.route("/api/products")
def list_products():
    search = (request.args.get("search") or "").strip()
    category = (request.args.get("category") or "").strip()
    condition = (request.args.get("condition") or "").strip()
    city = (request.args.get("city") or "").strip()
    sort = (request.args.get("sort") or "newest").strip()
    min_price = request.args.get("minPrice", type=float)
    max_price = request.args.get("maxPrice", type=float)

    query = Product.query.filter(Product.status == ProductStatus.active)

    if search:
        like = f"%{search.lower()}%"
        query = query.filter(or_(
            func.lower(Product.title).like(like),
            func.lower(Product.description).like(like),
        ))

    if category:
        cat = Category.query.filter(
            or_(Category.slug == category, Category.id == (int(category) if category.isdigit() else -1))
        ).first()
        if cat is None:
            return jsonify({"products": [], "pagination": {"page": 1, "pageSize": 0, "total": 0, "totalPages": 0}})
        query = query.filter(or_(Product.category_id == cat.id, Product.subcategory_id == cat.id))

    if min_price is not None:
        query = query.filter(Product.price >= min_price)
    if max_price is not None:
        query = query.filter(Product.price <= max_price)
    if condition:
        query = query.filter(Product.condition == condition)
    if city:
        query = query.filter(func.lower(Product.city).like(f"%{city.lower()}%"))

    if sort == "price_asc":
        query = query.order_by(Product.price.asc(), Product.id.asc())
    elif sort == "price_desc":
        query = query.order_by(Product.price.desc(), Product.id.desc())
    else:
        query = query.order_by(Product.created_at.desc(), Product.id.desc())

    products, meta = _paginate(query)
    return jsonify({"products": [p.to_dict() for p in products], "pagination": meta})


@app.route("/api/products/recent")
def recent_products():
    limit = min(max(request.args.get("limit", 8, type=int) or 8, 1), 50)
    products = (
        Product.query
        .filter(Product.status == ProductStatus.active)
        .order_by(Product.created_at.desc(), Product.id.desc())
        .limit(limit)
        .all()
    )
    return jsonify({"products": [p.to_dict() for p in products]})


@app.route("/api/products/<int:product_id>")
@public
def product_detail(product_id):
    product = _get_or_404(Product, product_id, "Product not found")
    if not _visible_to_viewer(product):
        raise NotFoundError("Product not found")

    if g.user is None or g.user.id != product.seller_id:
        product.views = (product.views or 0) + 1
        db.session.commit()

    data = product.to_dict()
    if g.user is not None:
        data["isFavorited"] = Favorite.query.filter_by(user_id=g.user.id, product_id=product.id).first() is not None
    return jsonify({"product": data})


@app.route("/api/products", methods=["POST"])
@login_required
def create_product():
    user = g.user
    if not user.is_approved_seller:
        raise ForbiddenError("Only approved sellers can list products")

    form = request.form
    title = _text(form, "title")
    description = _text(form, "description")
    condition = _text(form, "condition")
    city = _text(form, "city", 100)
    state = _text(form, "state", 100)
    pincode = _text(form, "pincode", 10)

    if not all((title, description, form.get("price"), condition, form.get("category"), city, state, pincode)):
        raise ValidationError("All fields are required")
    if len(title) > MAX_TITLE_LENGTH:
        raise ValidationError("Title must be 70 characters or less")
    if len(description) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError("Description must be 5000 characters or less")
    if condition not in PRODUCT_CONDITIONS:
        raise ValidationError("Invalid condition")
    if not PINCODE_RE.match(pincode):
        raise ValidationError("Invalid pincode")
    price = _parse_price(form.get("price"))

    category = _resolve_category(form.get("category"))
    subcategory = None
    if form.get("subcategory"):
        subcategory = _resolve_category(form.get("subcategory"), parent=category, label="subcategory")

    payment = None
    if form.get("paymentId"):
        payment = payments.claim_listing_payment(user, form.get("paymentId"))

    images = [fs for fs in request.files.getlist("images") if fs and fs.filename]
    if not images:
        raise ValidationError("At least one image is required")
    if len(images) > MAX_PRODUCT_IMAGES:
        raise ValidationError("Maximum 10 images allowed")
    for fs in images:
        _check_upload(fs, IMAGE_EXTS, "Image")

    stored = []
    try:
        for fs in images:
            stored.append(_save_upload(fs, "product-images"))
    except DependencyError:
        for path in stored:
            _safe_remove(path)
        raise

    product = Product(
        seller_id=user.id,
        title=title,
        description=description,
        price=price,
        condition=condition,
        category_id=category.id,
        subcategory_id=subcategory.id if subcategory else None,
        images=[_media_url(p) for p in stored],
        city=city,
        state=state,
        pincode=pincode,
        status=ProductStatus.active,
        payment_id=payment.id if payment else None,
    )
    db.session.add(product)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        for path in stored:
            _safe_remove(path)
        raise ConflictError("Payment has already been used")

    app.logger.info("Seller %s listed product %s", user.id, product.id)
    return jsonify({"message": "Product created successfully", "productId": product.id}), 201


@app.route("/api/products/mine")
@login_required
def my_listings():
    query = (
        Product.query
        .filter(Product.seller_id == g.user.id, Product.status != ProductStatus.deleted)
        .order_by(Product.created_at.desc(), Product.id.desc())
    )
    products, meta = _paginate(query)
    return jsonify({"products": [p.to_dict(with_seller=False) for p in products], "pagination": meta})


def _owned_product(product_id) -> Product:
    product = _get_or_404(Product, product_id, "Product not found")
    if product.seller_id != g.user.id:
        raise ForbiddenError("You can only manage your own listings")
    if product.status in (ProductStatus.deleted, ProductStatus.suspended):
        raise ValidationError("This listing can no longer be changed")
    return product


@app.route("/api/products/<int:product_id>", methods=["PUT"])
@login_required
def update_product(product_id):
    product = _owned_product(product_id)
    data = _json_body()

    if "title" in data:
        title = _text(data, "title")
        if not title or len(title) > MAX_TITLE_LENGTH:
            raise ValidationError("Title must be 1 to 70 characters")
        product.title = title
    if "description" in data:
        description = _text(data, "description")
        if not description or len(description) > MAX_DESCRIPTION_LENGTH:
            raise ValidationError("Description must be 1 to 5000 characters")
        product.description = description
    if "price" in data:
        product.price = _parse_price(data.get("price"))
    if "condition" in data:
        if data.get("condition") not in PRODUCT_CONDITIONS:
            raise ValidationError("Invalid condition")
        product.condition = data["condition"]
    for key in ("city", "state"):
        if key in data:
            value = _text(data, key, 100)
            if not value:
                raise ValidationError(f"{key.capitalize()} is required")
            setattr(product, key, value)
    if "pincode" in data:
        pincode = _text(data, "pincode", 10)
        if not PINCODE_RE.match(pincode):
            raise ValidationError("Invalid pincode")
        product.pincode = pincode
    if "status" in data:
        if data["status"] not in (ProductStatus.active.value, ProductStatus.sold.value):
            raise ValidationError("Invalid status")
        product.status = ProductStatus(data["status"])

    db.session.commit()
    return jsonify({"message": "Product updated successfully", "product": product.to_dict(with_seller=False)})


@app.route("/api/products/<int:product_id>", methods=["DELETE"])
@login_required
def delete_product(product_id):
    product = _owned_product(product_id)
    product.status = ProductStatus.deleted
    db.session.commit()
    return jsonify({"message": "Product deleted successfully"})


# =========================================================
# Favorites
# =========================================================
@app.route("/api/favorites")
@login_required
def list_favorites():
    favorites = (
        Favorite.query
        .join(Product, Favorite.product_id == Product.id)
        .filter(Favorite.user_id == g.user.id, Product.status != ProductStatus.deleted)
        .order_by(Favorite.created_at.desc(), Favorite.id.desc())
        .all()
    )
    return jsonify({"favorites": [
        dict(fav.product.to_dict(), favoritedAt=fav.created_at.isoformat()) for fav in favorites
    ]})


@app.route("/api/favorites/toggle", methods=["POST"])
@login_required
def toggle_favorite():
    product_id = _int_field(_json_body().get("productId"), "Product ID")
    product = _get_or_404(Product, product_id, "Product not found")

    existing = Favorite.query.filter_by(user_id=g.user.id, product_id=product.id).first()
    if existing:
        db.session.delete(existing)
        db.session.commit()
        return jsonify({"message": "Removed from favorites", "isFavorited": False})

    db.session.add(Favorite(user_id=g.user.id, product_id=product.id))
    try:
        db.session.commit()
    except IntegrityError:
        # a parallel toggle already added it
        db.session.rollback()
    return jsonify({"message": "Added to favorites", "isFavorited": True})


# =========================================================
# Chat
# =========================================================
def _chat_for_participant(chat_id) -> Chat:
    chat = _get_or_404(Chat, chat_id, "Chat not found")
    if not chat.is_participant(g.user.id):
        raise ForbiddenError("Unauthorized access to chat")
    return chat


def _post_message(chat: Chat, sender_id: int, body: str) -> ChatMessage:
    msg = ChatMessage(chat_id=chat.id, sender_id=sender_id, body=body)
    db.session.add(msg)
    chat.last_message = body[:100]
    chat.last_activity = datetime.utcnow()
    if sender_id == chat.buyer_id:
        chat.seller_unread = (chat.seller_unread or 0) + 1
    else:
        chat.buyer_unread = (chat.buyer_unread or 0) + 1
    return msg


def _message_text(data) -> str:
    body = _text(data, "message")
    if len(body) > MAX_REPLY_LENGTH:
        raise ValidationError("Message must be less than 1000 characters")
    return body


@app.route("/api/chats", methods=["POST"])
@login_required
def start_chat():
    data = _json_body()
    product = _get_or_404(Product, _int_field(data.get("productId"), "Product ID"), "Product not found")
    user = g.user

    if product.status != ProductStatus.active:
        raise ValidationError("Cannot start chat for inactive product")
    if product.seller_id == user.id:
        raise ValidationError("Cannot start chat with your own product")
    if not user.is_verified:
        raise ForbiddenError("Buyer verification required to start chat")

    existing = Chat.query.filter_by(product_id=product.id, buyer_id=user.id).first()
    if existing:
        return jsonify({"chat": existing.to_dict(user.id), "message": "Chat already exists"})

    body = _message_text(data)
    if body:
        chat_limiter.check(user.id)

    chat = Chat(product_id=product.id, buyer_id=user.id, seller_id=product.seller_id)
    db.session.add(chat)
    db.session.flush()
    if body:
        _post_message(chat, user.id, body)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        chat = Chat.query.filter_by(product_id=product.id, buyer_id=user.id).one()
        return jsonify({"chat": chat.to_dict(user.id), "message": "Chat already exists"})

    return jsonify({"chat": chat.to_dict(user.id), "message": "Chat created successfully"}), 201


@app.route("/api/chats")
@login_required
def list_chats():
    uid = g.user.id
    chats = (
        Chat.query
        .filter(or_(Chat.buyer_id == uid, Chat.seller_id == uid))
        .order_by(Chat.last_activity.desc(), Chat.id.desc())
        .all()
    )
    return jsonify({"chats": [c.to_dict(uid) for c in chats]})


@app.route("/api/chats/<int:chat_id>/messages", methods=["GET"])
@login_required
def chat_messages(chat_id):
    chat = _chat_for_participant(chat_id)
    uid = g.user.id

    ChatMessage.query.filter(
        ChatMessage.chat_id == chat.id,
        ChatMessage.sender_id != uid,
        ChatMessage.is_read.is_(False),
    ).update({ChatMessage.is_read: True}, synchronize_session=False)
    if uid == chat.buyer_id:
        chat.buyer_unread = 0
    else:
        chat.seller_unread = 0
    db.session.commit()

    messages = chat.messages.all()
    return jsonify({"chat": chat.to_dict(uid), "messages": [m.to_dict() for m in messages]})


@app.route("/api/chats/<int:chat_id>/messages", methods=["POST"])
@login_required
def send_chat_message(chat_id):
    chat = _chat_for_participant(chat_id)
    uid = g.user.id
    is_buyer = uid == chat.buyer_id

    if (chat.seller_blocked if is_buyer else chat.buyer_blocked):
        raise ForbiddenError("You have been blocked from this chat")
    if (chat.buyer_blocked if is_buyer else chat.seller_blocked):
        raise ValidationError("Unblock this chat to send messages")

    body = _message_text(_json_body())
    if not body:
        raise ValidationError("Message is required")

    chat_limiter.check(uid)
    msg = _post_message(chat, uid, body)
    db.session.commit()
    return jsonify({"message": msg.to_dict()}), 201


@app.route("/api/chats/<int:chat_id>/block", methods=["POST"])
@login_required
def toggle_chat_block(chat_id):
    chat = _chat_for_participant(chat_id)
    if g.user.id == chat.buyer_id:
        chat.buyer_blocked = not chat.buyer_blocked
        blocked = chat.buyer_blocked
    else:
        chat.seller_blocked = not chat.seller_blocked
        blocked = chat.seller_blocked
    db.session.commit()
    return jsonify({"message": "User blocked" if blocked else "User unblocked", "blockedByMe": blocked})


# =========================================================
# Fraud reports
# =========================================================
@app.route("/api/fraud-reports", methods=["POST"])
@login_required
def create_fraud_report():
    data = _payload()
    product = _get_or_404(Product, _int_field(data.get("productId"), "Product ID"), "Product not found")
    user = g.user

    try:
        reason = FraudReason(_text(data, "reason"))
    except ValueError:
        raise ValidationError("Invalid reason selected")
    if product.seller_id == user.id:
        raise ValidationError("You cannot report your own product")

    if FraudReport.query.filter_by(reporter_id=user.id, product_id=product.id).first():
        raise ConflictError("You have already reported this product")

    now = datetime.utcnow()
    day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    today_count = FraudReport.query.filter(
        FraudReport.reporter_id == user.id,
        FraudReport.created_at >= day_start,
    ).count()
    if today_count >= FRAUD_REPORTS_PER_DAY:
        retry = int((day_start + timedelta(days=1) - now).total_seconds())
        raise RateLimitError(
            f"You have reached the daily limit of {FRAUD_REPORTS_PER_DAY} reports", retry_after=retry
        )

    screenshot = _optional_upload("screenshot", IMAGE_EXTS, "fraud-reports", "Screenshot")
    report = FraudReport(
        reporter_id=user.id,
        product_id=product.id,
        reason=reason,
        description=_text(data, "description", 2000) or None,
        screenshot=screenshot,
    )
    db.session.add(report)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("You have already reported this product")

    app.logger.info("User %s reported product %s (%s)", user.id, product.id, reason.value)
    return jsonify({"message": "Fraud report submitted successfully", "reportId": report.id}), 201


@app.route("/api/fraud-reports/mine")
@login_required
def my_fraud_reports():
    reports = (
        FraudReport.query
        .filter_by(reporter_id=g.user.id)
        .order_by(FraudReport.created_at.desc(), FraudReport.id.desc())
        .all()
    )
    return jsonify({"reports": [r.to_dict() for r in reports]})


# =========================================================
# Support tickets
# =========================================================
def _own_ticket(ticket_id) -> SupportTicket:
    ticket = _get_or_404(SupportTicket, ticket_id, "Ticket not found")
    if ticket.user_id != g.user.id:
        raise ForbiddenError("You can only view your own tickets")
    return ticket


@app.route("/api/support/tickets", methods=["POST"])
@login_required
def create_ticket():
    data = _payload()
    email = _text(data, "email", 255)
    category = _text(data, "category")
    description = _text(data, "description")

    if not email or not category or not description:
        raise ValidationError("All fields are required")
    if not EMAIL_RE.match(email):
        raise ValidationError("Invalid email format")
    if category not in TICKET_CATEGORIES:
        raise ValidationError("Invalid category selected")
    if len(description) > MAX_REPLY_LENGTH:
        raise ValidationError("Description must be less than 1000 characters")

    screenshot = _optional_upload("screenshot", IMAGE_EXTS, "support-screenshots", "Screenshot")
    ticket = SupportTicket(
        user_id=g.user.id,
        ticket_number=_new_ticket_number(),
        email=email,
        category=category,
        description=description,
        screenshot=screenshot,
        status=TicketStatus.open,
    )
    db.session.add(ticket)
    db.session.commit()

    return jsonify({
        "message": "Support ticket created successfully",
        "ticketId": ticket.id,
        "ticketNumber": ticket.ticket_number,
    }), 201


@app.route("/api/support/tickets")
@login_required
def my_tickets():
    tickets = (
        SupportTicket.query
        .filter_by(user_id=g.user.id)
        .order_by(SupportTicket.id.desc())
        .all()
    )
    return jsonify({"tickets": [t.to_dict() for t in tickets]})


@app.route("/api/support/tickets/<int:ticket_id>")
@login_required
def ticket_detail(ticket_id):
    ticket = _own_ticket(ticket_id)
    return jsonify({"ticket": ticket.to_dict(with_replies=True)})


@app.route("/api/support/tickets/<int:ticket_id>/replies", methods=["POST"])
@login_required
def reply_to_ticket(ticket_id):
    ticket = _own_ticket(ticket_id)
    content = _text(_json_body(), "content")

    if not content:
        raise ValidationError("Reply content is required")
    if len(content) > MAX_REPLY_LENGTH:
        raise ValidationError("Reply must be less than 1000 characters")
    if not ticket.accepts_replies:
        raise ValidationError("Cannot add replies to resolved tickets")

    reply = TicketReply(ticket_id=ticket.id, author_id=g.user.id, is_admin=False, body=content)
    db.session.add(reply)
    ticket.updated_at = datetime.utcnow()
    db.session.commit()

    return jsonify({"message": "Reply added successfully", "reply": reply.to_dict()}), 201


# =========================================================
# Payments
# =========================================================
@app.route("/api/payments/create-order", methods=["POST"])
@login_required
def create_payment_order():
    payment, checkout = payments.create_listing_fee_checkout(g.user)
    return jsonify({
        "paymentId": payment.id,
        "sessionId": checkout.id,
        "url": getattr(checkout, "url", None),
        "amount": payment.amount_cents,
        "currency": payment.currency,
        "key": app.config.get("STRIPE_PUBLISHABLE_KEY"),
    })


@app.route("/api/payments/verify", methods=["POST"])
@login_required
def verify_payment():
    data = _json_body()
    payment = payments.verify_listing_fee_payment(g.user, _text(data, "sessionId"))
    if payment.status != PaymentStatus.completed:
        raise ValidationError("Payment not successful. Please try again or contact support.")
    return jsonify({"message": "Payment verified", "payment": payment.to_dict()})


@app.route("/api/payments/<int:payment_id>")
@login_required
def payment_detail(payment_id):
    payment = _get_or_404(Payment, payment_id, "Payment not found")
    if payment.user_id != g.user.id and g.user.role != RoleEnum.admin:
        raise ForbiddenError()
    return jsonify({"payment": payment.to_dict()})


# =========================================================
# Admin: users / sellers
# =========================================================
@app.route("/api/admin/users")
@admin_required
def admin_users():
    role = (request.args.get("role") or "").strip().upper()
    status = (request.args.get("status") or "").strip().upper()
    q = (request.args.get("q") or "").strip()
    suspended = _bool_arg("suspended")

    query = User.query
    if role:
        try:
            query = query.filter(User.role == RoleEnum(role))
        except ValueError:
            raise ValidationError("Invalid role")
    if status:
        try:
            query = query.filter(User.seller_status == SellerStatus(status))
        except ValueError:
            raise ValidationError("Invalid seller status")
    if suspended is not None:
        query = query.filter(User.is_suspended.is_(suspended))
    if q:
        like = f"%{q.lower()}%"
        query = query.filter(or_(User.phone.like(like), func.lower(User.name).like(like)))

    users, meta = _paginate(query.order_by(User.id.asc()), default_size=25)
    return jsonify({"users": [u.to_dict() for u in users], "pagination": meta})


@app.route("/api/admin/users/<int:user_id>")
@admin_required
def admin_user_detail(user_id):
    user = _get_or_404(User, user_id, "User not found")
    data = user.to_dict()
    data["sellerDetails"] = user.seller_details
    data["stats"] = {
        "products": Product.query.filter_by(seller_id=user.id).count(),
        "reportsFiled": FraudReport.query.filter_by(reporter_id=user.id).count(),
        "tickets": SupportTicket.query.filter_by(user_id=user.id).count(),
    }
    return jsonify({"user": data})


@app.route("/api/admin/users/<int:user_id>/action", methods=["POST"])
@admin_required
def admin_user_action(user_id):
    data = _json_body()
    action = _text(data, "action")
    user_type = _text(data, "userType")
    if not action or not user_type:
        raise ValidationError("Action and userType are required")

    user = _get_or_404(User, user_id, "User not found")
    moderation.user_action(g.user, user, action, user_type)
    return jsonify({"message": f"User {action} applied successfully", "user": user.to_dict()})


@app.route("/api/admin/users/bulk-action", methods=["POST"])
@admin_required
def admin_users_bulk_action():
    data = _json_body()
    action = _text(data, "action")
    if not action or not data.get("userIds") or not data.get("userType"):
        raise ValidationError("Action, userIds array, and userType are required")

    updated = moderation.bulk_user_action(g.user, action, data.get("userIds"), data.get("userType"))
    return jsonify({"message": f"{updated} users updated ({action})", "updatedCount": updated})


@app.route("/api/admin/sellers/<int:user_id>/approve", methods=["POST"])
@admin_required
def admin_approve_seller(user_id):
    seller = _get_or_404(User, user_id, "Seller not found")
    moderation.set_seller_status(g.user, seller, SellerStatus.approved)
    return jsonify({"message": "Seller approved successfully", "seller": seller.to_dict()})


@app.route("/api/admin/sellers/<int:user_id>/reject", methods=["POST"])
@admin_required
def admin_reject_seller(user_id):
    seller = _get_or_404(User, user_id, "Seller not found")
    moderation.set_seller_status(g.user, seller, SellerStatus.rejected)
    return jsonify({"message": "Seller rejected", "seller": seller.to_dict()})


# =========================================================
# Admin: products
# =========================================================
@app.route("/api/admin/products")
@admin_required
def admin_products():
    status = (request.args.get("status") or "").strip().upper()
    q = (request.args.get("q") or "").strip()
    seller_id = request.args.get("sellerId", type=int)

    query = Product.query
    if status:
        try:
            query = query.filter(Product.status == ProductStatus(status))
        except ValueError:
            raise ValidationError("Invalid status")
    if seller_id:
        query = query.filter(Product.seller_id == seller_id)
    if q:
        query = query.filter(func.lower(Product.title).like(f"%{q.lower()}%"))

    products, meta = _paginate(query.order_by(Product.created_at.desc(), Product.id.desc()), default_size=25)
    return jsonify({"products": [p.to_dict() for p in products], "pagination": meta})


@app.route("/api/admin/products/<int:product_id>", methods=["PUT"])
@admin_required
def admin_update_product(product_id):
    product = _get_or_404(Product, product_id, "Product not found")
    moderation.set_product_status(g.user, product, _text(_json_body(), "status").upper())
    return jsonify({"message": "Product updated successfully", "product": product.to_dict()})


@app.route("/api/admin/products/bulk-action", methods=["POST"])
@admin_required
def admin_products_bulk_action():
    data = _json_body()
    action = _text(data, "action")
    if not action or not data.get("productIds"):
        raise ValidationError("Action and productIds array are required")

    updated = moderation.bulk_product_action(g.user, action, data.get("productIds"))
    return jsonify({"message": f"{updated} products updated ({action})", "updatedCount": updated})


# =========================================================
# Admin: fraud reports
# =========================================================
@app.route("/api/admin/fraud-reports")
@admin_required
def admin_fraud_reports():
    status = (request.args.get("status") or "").strip().upper()
    query = FraudReport.query
    if status:
        try:
            query = query.filter(FraudReport.status == ReportStatus(status))
        except ValueError:
            raise ValidationError("Invalid status")

    reports, meta = _paginate(query.order_by(FraudReport.created_at.desc(), FraudReport.id.desc()), default_size=25)
    return jsonify({"reports": [r.to_dict() for r in reports], "pagination": meta})


@app.route("/api/admin/fraud-reports/<int:report_id>/action", methods=["POST"])
@admin_required
def admin_fraud_report_action(report_id):
    data = _json_body()
    action = _text(data, "action")
    if not action:
        raise ValidationError("Action is required")

    report = _get_or_404(FraudReport, report_id, "Report not found")
    message = moderation.resolve_fraud_report(g.user, report, action, data.get("notes"))
    return jsonify({"message": message, "report": report.to_dict()})


# =========================================================
# Admin: support tickets
# =========================================================
@app.route("/api/admin/tickets")
@admin_required
def admin_tickets():
    status = (request.args.get("status") or "").strip().upper()
    q = (request.args.get("q") or "").strip()

    query = SupportTicket.query.join(User, SupportTicket.user_id == User.id)
    if status:
        try:
            query = query.filter(SupportTicket.status == TicketStatus(status))
        except ValueError:
            raise ValidationError("Invalid status")
    if q:
        like = f"%{q.lower()}%"
        query = query.filter(or_(func.lower(SupportTicket.ticket_number).like(like), User.phone.like(like)))

    tickets, meta = _paginate(query.order_by(SupportTicket.id.desc()), default_size=25)
    return jsonify({"tickets": [t.to_dict() for t in tickets], "pagination": meta})


@app.route("/api/admin/tickets/stats")
@admin_required
def admin_ticket_stats():
    counts = dict(
        db.session.query(SupportTicket.status, func.count(SupportTicket.id))
        .group_by(SupportTicket.status)
        .all()
    )
    stats = {s.value: counts.get(s, 0) for s in TicketStatus}
    stats["total"] = sum(stats.values())
    return jsonify({"stats": stats})


@app.route("/api/admin/tickets/<int:ticket_id>")
@admin_required
def admin_ticket_detail(ticket_id):
    ticket = _get_or_404(SupportTicket, ticket_id, "Ticket not found")
    data = ticket.to_dict(with_replies=True, include_notes=True)
    data["user"] = ticket.user.to_dict() if ticket.user else None
    return jsonify({"ticket": data})


@app.route("/api/admin/tickets/<int:ticket_id>/replies", methods=["POST"])
@admin_required
def admin_reply_ticket(ticket_id):
    ticket = _get_or_404(SupportTicket, ticket_id, "Ticket not found")
    data = _json_body()
    message = _text(data, "message")
    if not message:
        raise ValidationError("Message is required")
    if len(message) > MAX_REPLY_LENGTH:
        raise ValidationError("Reply must be less than 1000 characters")

    reply = TicketReply(
        ticket_id=ticket.id,
        author_id=g.user.id,
        is_admin=True,
        body=message,
        admin_notes=_text(data, "adminNotes", 2000) or None,
    )
    db.session.add(reply)
    if ticket.status == TicketStatus.open:
        ticket.status = TicketStatus.in_progress
    ticket.updated_at = datetime.utcnow()
    db.session.commit()

    notify_best_effort(send_support_reply_email, ticket, message)
    return jsonify({"message": "Reply sent successfully", "ticket": ticket.to_dict(with_replies=True, include_notes=True)})


@app.route("/api/admin/tickets/<int:ticket_id>", methods=["PUT"])
@admin_required
def admin_update_ticket(ticket_id):
    ticket = _get_or_404(SupportTicket, ticket_id, "Ticket not found")
    data = _json_body()

    if data.get("status"):
        try:
            ticket.status = TicketStatus(str(data["status"]).upper())
        except ValueError:
            raise ValidationError("Invalid status")
    if data.get("priority"):
        try:
            ticket.priority = TicketPriority(str(data["priority"]).capitalize())
        except ValueError:
            raise ValidationError("Invalid priority")

    db.session.commit()
    return jsonify({"message": "Ticket updated successfully", "ticket": ticket.to_dict()})


@app.route("/api/admin/tickets/<int:ticket_id>/close", methods=["POST"])
@admin_required
def admin_close_ticket(ticket_id):
    ticket = _get_or_404(SupportTicket, ticket_id, "Ticket not found")
    ticket.status = TicketStatus.closed
    db.session.commit()
    return jsonify({"message": "Ticket closed", "ticket": ticket.to_dict()})


# =========================================================
# Admin: dashboard
# =========================================================
@app.route("/api/admin/stats")
@admin_required
def admin_stats():
    revenue = (
        db.session.query(func.coalesce(func.sum(Payment.amount_cents), 0))
        .filter(Payment.status == PaymentStatus.completed)
        .scalar()
    )
    return jsonify({"stats": {
        "buyers": User.query.filter_by(role=RoleEnum.buyer).count(),
        "sellers": User.query.filter_by(role=RoleEnum.seller).count(),
        "pendingSellers": User.query.filter_by(role=RoleEnum.seller, seller_status=SellerStatus.pending).count(),
        "suspendedUsers": User.query.filter_by(is_suspended=True).count(),
        "activeProducts": Product.query.filter_by(status=ProductStatus.active).count(),
        "suspendedProducts": Product.query.filter_by(status=ProductStatus.suspended).count(),
        "openTickets": SupportTicket.query.filter(
            SupportTicket.status.in_([TicketStatus.open, TicketStatus.in_progress])
        ).count(),
        "openFraudReports": FraudReport.query.filter_by(status=ReportStatus.open).count(),
        "listingRevenueCents": int(revenue or 0),
    }})


@app.route("/api/admin/audit-log")
@admin_required
def admin_audit_log():
    entries, meta = _paginate(AuditLog.query.order_by(AuditLog.id.desc()), default_size=50)
    return jsonify({"entries": [e.to_dict() for e in entries], "pagination": meta})


# =========================================================
# Main / DB init + seed
# =========================================================
if __name__ == "__main__":
    with app.app_context():
        db.create_all()
        seed_categories()

        admin_phone = os.getenv("ADMIN_PHONE")
        if admin_phone:
            phone = otp.normalize_phone(admin_phone)
            admin = User.query.filter_by(phone=phone).first()
            if not admin:
                admin = User(phone=phone, name="SellX Admin", role=RoleEnum.admin, is_verified=True)
                db.session.add(admin)
            else:
                admin.role = RoleEnum.admin
            db.session.commit()

    debug_flag = os.getenv("FLASK_DEBUG", "1" if IS_DEV else "0") == "1"
    app.run(debug=debug_flag)
