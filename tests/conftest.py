import os
import importlib
from decimal import Decimal

import pytest


@pytest.fixture(scope="session")
def app_module(tmp_path_factory):
    db_path = tmp_path_factory.mktemp("data") / "test.db"
    os.environ["DATABASE_URL"] = f"sqlite:///{db_path}"
    os.environ["APP_ENV"] = "dev"
    os.environ["SECRET_KEY"] = "test-secret"
    os.environ["UPLOAD_FOLDER"] = str(tmp_path_factory.mktemp("uploads"))
    for key in ("TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN", "TWILIO_PHONE_NUMBER", "SMTP_HOST"):
        os.environ.pop(key, None)

    import app as app_module  # noqa: WPS433
    importlib.reload(app_module)
    app_module.app.config.update(TESTING=True, WTF_CSRF_ENABLED=False)
    return app_module


@pytest.fixture(autouse=True)
def db_setup(app_module):
    db = app_module.db
    with app_module.app.app_context():
        db.drop_all()
        db.create_all()
    app_module.counter_store.clear()
    yield
    with app_module.app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app_module):
    return app_module.app.test_client()


def _detach(app_module, obj):
    app_module.db.session.refresh(obj)
    app_module.db.session.expunge(obj)
    return obj


def create_user(app_module, phone, role=None, **fields):
    db = app_module.db
    fields.setdefault("is_verified", True)
    with app_module.app.app_context():
        user = app_module.User(phone=phone, role=role or app_module.RoleEnum.buyer, **fields)
        db.session.add(user)
        db.session.commit()
        return _detach(app_module, user)


def create_seller(app_module, phone, **fields):
    return create_user(
        app_module,
        phone,
        app_module.RoleEnum.seller,
        seller_status=app_module.SellerStatus.approved,
        name=fields.pop("name", "Test Seller"),
        **fields,
    )


def login(client, app_module, phone):
    """Sign in through the real send/verify flow, reading the code from the database."""
    resp = client.post("/api/auth/send-otp", json={"phone": phone})
    assert resp.status_code == 200, resp.get_json()

    with app_module.app.app_context():
        code = app_module.otp.lookup_code(phone).code

    resp = client.post("/api/auth/verify-otp", json={"phone": phone, "code": code})
    return resp


def create_category(app_module, name="Electronics", parent=None):
    db = app_module.db
    with app_module.app.app_context():
        slug = app_module.slugify(name) if parent is None else f"{parent.slug}-{app_module.slugify(name)}"
        category = app_module.Category(name=name, slug=slug, parent_id=parent.id if parent else None)
        db.session.add(category)
        db.session.commit()
        return _detach(app_module, category)


def create_product(app_module, seller, category, title="Used phone", price="1000", status=None, **fields):
    db = app_module.db
    with app_module.app.app_context():
        product = app_module.Product(
            seller_id=seller.id,
            title=title,
            description=fields.pop("description", "Works fine"),
            price=Decimal(price),
            condition=fields.pop("condition", "Used"),
            category_id=category.id,
            images=["/uploads/product-images/test.png"],
            city=fields.pop("city", "Pune"),
            state=fields.pop("state", "Maharashtra"),
            pincode=fields.pop("pincode", "411001"),
            status=status or app_module.ProductStatus.active,
            **fields,
        )
        db.session.add(product)
        db.session.commit()
        return _detach(app_module, product)
