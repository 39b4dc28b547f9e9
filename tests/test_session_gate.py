from tests.conftest import create_user, login


def test_health_endpoint(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json()["ok"] is True


def test_protected_route_without_session_is_401(client):
    resp = client.get("/api/profile")
    assert resp.status_code == 401
    assert resp.get_json() == {"error": "Unauthorized"}

    assert client.get("/api/admin/users").status_code == 401


def test_public_routes_do_not_need_a_session(client):
    assert client.get("/api/products").status_code == 200
    assert client.get("/api/categories").status_code == 200
    assert client.get("/api/auth/session").get_json() == {"user": None}


def test_buyer_is_refused_admin_routes(app_module, client):
    create_user(app_module, "+911111111111")
    login(client, app_module, "+911111111111")

    assert client.get("/api/profile").status_code == 200

    resp = client.get("/api/admin/users")
    assert resp.status_code == 403
    assert resp.get_json() == {"error": "Admin access required"}


def test_admin_reaches_admin_routes(app_module, client):
    create_user(app_module, "+912222222222", app_module.RoleEnum.admin)
    login(client, app_module, "+912222222222")

    resp = client.get("/api/admin/users")
    assert resp.status_code == 200
    assert resp.get_json()["pagination"]["total"] == 1


def test_suspension_takes_effect_on_next_request(app_module, client):
    user = create_user(app_module, "+913333333333")
    login(client, app_module, "+913333333333")
    assert client.get("/api/profile").status_code == 200

    with app_module.app.app_context():
        db_user = app_module.db.session.get(app_module.User, user.id)
        db_user.is_suspended = True
        app_module.db.session.commit()

    resp = client.get("/api/profile")
    assert resp.status_code == 403
    assert resp.get_json() == {"error": "Account suspended"}
    assert client.get("/api/auth/session").get_json() == {"user": None}


def test_role_change_takes_effect_on_next_request(app_module, client):
    user = create_user(app_module, "+914444444444", app_module.RoleEnum.admin)
    login(client, app_module, "+914444444444")
    assert client.get("/api/admin/stats").status_code == 200

    with app_module.app.app_context():
        db_user = app_module.db.session.get(app_module.User, user.id)
        db_user.role = app_module.RoleEnum.buyer
        app_module.db.session.commit()

    assert client.get("/api/admin/stats").status_code == 403


def test_logout_ends_session(app_module, client):
    create_user(app_module, "+915555555555")
    login(client, app_module, "+915555555555")

    assert client.post("/api/auth/logout").status_code == 200
    assert client.get("/api/profile").status_code == 401


def test_unknown_route_uses_json_envelope(client):
    resp = client.get("/api/nope")
    assert resp.status_code == 404
    assert resp.get_json() == {"error": "Not Found"}
