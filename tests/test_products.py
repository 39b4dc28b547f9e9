from io import BytesIO

from tests.conftest import create_category, create_product, create_seller, create_user, login

SELLER_PHONE = "+914000000001"


def _png(name="photo.png", size=128):
    return (BytesIO(b"\x89PNG" + b"0" * size), name)


def _listing_form(category, /, **overrides):
    data = {
        "title": "iPhone 12",
        "description": "Good condition, with box",
        "price": "25000",
        "condition": "Used",
        "category": str(category.id),
        "city": "Pune",
        "state": "Maharashtra",
        "pincode": "411001",
        "images": [_png()],
    }
    data.update(overrides)
    return data


def test_approved_seller_creates_listing(app_module, client):
    create_seller(app_module, SELLER_PHONE)
    category = create_category(app_module)
    login(client, app_module, SELLER_PHONE)

    resp = client.post("/api/products", data=_listing_form(category), content_type="multipart/form-data")
    assert resp.status_code == 201
    product_id = resp.get_json()["productId"]

    product = client.get(f"/api/products/{product_id}").get_json()["product"]
    assert product["title"] == "iPhone 12"
    assert product["price"] == 25000.0
    assert len(product["images"]) == 1
    assert product["images"][0].startswith("/uploads/product-images/")


def test_buyer_cannot_list(app_module, client):
    create_user(app_module, "+914000000002")
    category = create_category(app_module)
    login(client, app_module, "+914000000002")

    resp = client.post("/api/products", data=_listing_form(category), content_type="multipart/form-data")
    assert resp.status_code == 403


def test_listing_validation(app_module, client):
    create_seller(app_module, SELLER_PHONE)
    category = create_category(app_module)
    login(client, app_module, SELLER_PHONE)

    cases = [
        {"title": "x" * 71},
        {"condition": "Broken"},
        {"price": "-5"},
        {"pincode": "12"},
        {"images": []},
        {"images": [_png(f"p{i}.png") for i in range(11)]},
        {"images": [_png("virus.exe")]},
        {"category": "999"},
    ]
    for overrides in cases:
        resp = client.post(
            "/api/products", data=_listing_form(category, **overrides), content_type="multipart/form-data"
        )
        assert resp.status_code == 400, overrides

    with app_module.app.app_context():
        assert app_module.Product.query.count() == 0


def test_catalogue_filters_and_sorting(app_module, client):
    seller = create_seller(app_module, SELLER_PHONE)
    phones = create_category(app_module, "Electronics")
    cars = create_category(app_module, "Vehicles")
    create_product(app_module, seller, phones, title="Cheap phone", price="500")
    create_product(app_module, seller, phones, title="Fancy phone", price="50000", condition="New")
    create_product(app_module, seller, cars, title="Hatchback", price="300000", city="Mumbai")
    create_product(app_module, seller, phones, title="Sold phone", status=app_module.ProductStatus.sold)

    data = client.get("/api/products").get_json()
    assert data["pagination"]["total"] == 3

    titles = [p["title"] for p in client.get("/api/products?category=electronics&sort=price_asc").get_json()["products"]]
    assert titles == ["Cheap phone", "Fancy phone"]

    titles = [p["title"] for p in client.get("/api/products?search=FANCY").get_json()["products"]]
    assert titles == ["Fancy phone"]

    titles = [p["title"] for p in client.get("/api/products?minPrice=1000&maxPrice=100000").get_json()["products"]]
    assert titles == ["Fancy phone"]

    titles = [p["title"] for p in client.get("/api/products?city=mumbai").get_json()["products"]]
    assert titles == ["Hatchback"]

    data = client.get("/api/products?limit=1&page=2&sort=price_desc").get_json()
    assert data["pagination"]["totalPages"] == 3
    assert data["products"][0]["title"] == "Fancy phone"


def test_hidden_listing_only_visible_to_owner(app_module, client):
    seller = create_seller(app_module, SELLER_PHONE)
    product = create_product(
        app_module, seller, create_category(app_module), status=app_module.ProductStatus.suspended
    )

    assert client.get(f"/api/products/{product.id}").status_code == 404

    login(client, app_module, SELLER_PHONE)
    assert client.get(f"/api/products/{product.id}").status_code == 200


def test_owner_updates_and_deletes_listing(app_module, client):
    seller = create_seller(app_module, SELLER_PHONE)
    product = create_product(app_module, seller, create_category(app_module))
    login(client, app_module, SELLER_PHONE)

    resp = client.put(f"/api/products/{product.id}", json={"price": "750", "status": "SOLD"})
    assert resp.status_code == 200
    assert resp.get_json()["product"]["status"] == "SOLD"
    assert resp.get_json()["product"]["price"] == 750.0

    assert client.put(f"/api/products/{product.id}", json={"status": "SUSPENDED"}).status_code == 400

    assert client.delete(f"/api/products/{product.id}").status_code == 200
    assert client.get("/api/products/mine").get_json()["products"] == []


def test_other_seller_cannot_edit(app_module, client):
    seller = create_seller(app_module, SELLER_PHONE)
    product = create_product(app_module, seller, create_category(app_module))
    create_seller(app_module, "+914000000009")
    login(client, app_module, "+914000000009")

    assert client.put(f"/api/products/{product.id}", json={"price": "1"}).status_code == 403
    assert client.delete(f"/api/products/{product.id}").status_code == 403


def test_seller_application(app_module, client):
    create_user(app_module, "+914000000002")
    login(client, app_module, "+914000000002")

    form = {
        "name": "Ravi",
        "email": "ravi@test.local",
        "address": "12 MG Road",
        "city": "Pune",
        "state": "Maharashtra",
        "pincode": "411001",
        "governmentId": (BytesIO(b"%PDF-1.4"), "id.pdf"),
    }
    resp = client.post("/api/seller/apply", data=form, content_type="multipart/form-data")
    assert resp.status_code == 200

    status = client.get("/api/seller/status").get_json()
    assert status == {"role": "SELLER", "sellerStatus": "PENDING"}

    form["governmentId"] = (BytesIO(b"%PDF-1.4"), "id.pdf")
    resp = client.post("/api/seller/apply", data=form, content_type="multipart/form-data")
    assert resp.status_code == 409


def test_profile_update_requires_name(app_module, client):
    create_user(app_module, "+914000000002")
    login(client, app_module, "+914000000002")

    assert client.put("/api/profile", json={"city": "Pune"}).status_code == 400

    resp = client.put("/api/profile", json={"name": "Meera", "email": "meera@test.local", "city": "Pune"})
    assert resp.status_code == 200
    assert resp.get_json()["profile"]["name"] == "Meera"


def test_phone_change_requires_code_for_new_number(app_module, client):
    create_user(app_module, "+914000000002")
    login(client, app_module, "+914000000002")

    assert client.post("/api/profile/phone/send-otp", json={"phone": "+914000000003"}).status_code == 200
    with app_module.app.app_context():
        code = app_module.otp.lookup_code("+914000000003").code

    resp = client.post("/api/profile/phone/verify", json={"phone": "+914000000003", "code": code})
    assert resp.status_code == 200
    assert resp.get_json()["profile"]["phone"] == "+914000000003"


def test_categories_tree(app_module, client):
    with app_module.app.app_context():
        created = app_module.seed_categories()
        assert created > 0
        # seeding twice adds nothing
        assert app_module.seed_categories() == 0

    tree = client.get("/api/categories").get_json()["categories"]
    electronics = next(c for c in tree if c["slug"] == "electronics")
    assert "Mobiles" in [s["name"] for s in electronics["subcategories"]]
