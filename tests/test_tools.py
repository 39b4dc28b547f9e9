from tests.conftest import create_user


def test_promote_user_admin_creates_and_updates(app_module, monkeypatch):
    from tools import promote_user_admin

    monkeypatch.setattr("sys.argv", ["promote_user_admin.py", "+91 90000 00077", "Ops"])
    assert promote_user_admin.main() == 0

    with app_module.app.app_context():
        user = app_module.User.query.filter_by(phone="+919000000077").one()
        assert user.role == app_module.RoleEnum.admin
        assert user.name == "Ops"

    create_user(app_module, "+919000000078", is_suspended=True)
    monkeypatch.setattr("sys.argv", ["promote_user_admin.py", "+919000000078"])
    assert promote_user_admin.main() == 0

    with app_module.app.app_context():
        user = app_module.User.query.filter_by(phone="+919000000078").one()
        assert user.role == app_module.RoleEnum.admin
        assert user.is_suspended is False


def test_promote_user_admin_rejects_bad_phone(monkeypatch, app_module):
    from tools import promote_user_admin

    monkeypatch.setattr("sys.argv", ["promote_user_admin.py", "not-a-phone"])
    assert promote_user_admin.main() == 1


def test_init_database_is_idempotent(app_module):
    import init_db

    init_db.init_database()
    init_db.init_database()

    with app_module.app.app_context():
        assert app_module.Category.query.filter_by(slug="electronics").count() == 1
