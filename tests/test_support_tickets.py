import re

from tests.conftest import create_user, login

USER_PHONE = "+913000000001"
ADMIN_PHONE = "+913000000009"


def _open_ticket(client, **overrides):
    data = {"email": "user@test.local", "category": "Payment Problems", "description": "Charged twice"}
    data.update(overrides)
    return client.post("/api/support/tickets", json=data)


def test_ticket_create_and_reply_order(app_module, client):
    create_user(app_module, USER_PHONE)
    login(client, app_module, USER_PHONE)

    resp = _open_ticket(client)
    assert resp.status_code == 201
    body = resp.get_json()
    assert re.match(r"^TKT-\d{8}-\d{5}$", body["ticketNumber"])
    ticket_id = body["ticketId"]

    for text in ("first", "second", "third"):
        assert client.post(f"/api/support/tickets/{ticket_id}/replies", json={"content": text}).status_code == 201

    ticket = client.get(f"/api/support/tickets/{ticket_id}").get_json()["ticket"]
    assert [r["content"] for r in ticket["replies"]] == ["first", "second", "third"]
    assert "adminNotes" not in ticket["replies"][0]


def test_ticket_validation(app_module, client):
    create_user(app_module, USER_PHONE)
    login(client, app_module, USER_PHONE)

    assert _open_ticket(client, category="Spaceships").status_code == 400
    assert _open_ticket(client, email="not-an-email").status_code == 400
    assert _open_ticket(client, description="x" * 1001).status_code == 400
    assert _open_ticket(client, description="").status_code == 400


def test_ticket_idor_blocked(app_module, client):
    owner = app_module.app.test_client()
    create_user(app_module, USER_PHONE)
    login(owner, app_module, USER_PHONE)
    ticket_id = _open_ticket(owner).get_json()["ticketId"]

    create_user(app_module, "+913000000002")
    login(client, app_module, "+913000000002")
    assert client.get(f"/api/support/tickets/{ticket_id}").status_code == 403
    assert client.post(f"/api/support/tickets/{ticket_id}/replies", json={"content": "hi"}).status_code == 403
    assert client.get("/api/support/tickets").get_json()["tickets"] == []


def test_admin_reply_moves_ticket_in_progress(app_module, client, monkeypatch):
    sent = []
    monkeypatch.setattr(app_module, "send_support_reply_email", lambda ticket, message: sent.append(message))

    create_user(app_module, USER_PHONE)
    login(client, app_module, USER_PHONE)
    ticket_id = _open_ticket(client).get_json()["ticketId"]

    admin = app_module.app.test_client()
    create_user(app_module, ADMIN_PHONE, app_module.RoleEnum.admin)
    login(admin, app_module, ADMIN_PHONE)

    resp = admin.post(
        f"/api/admin/tickets/{ticket_id}/replies",
        json={"message": "Refund issued", "adminNotes": "checked gateway"},
    )
    assert resp.status_code == 200
    ticket = resp.get_json()["ticket"]
    assert ticket["status"] == "IN_PROGRESS"
    assert ticket["replies"][-1]["adminNotes"] == "checked gateway"
    assert sent == ["Refund issued"]

    user_view = client.get(f"/api/support/tickets/{ticket_id}").get_json()["ticket"]
    assert user_view["replies"][-1] == {
        "id": user_view["replies"][-1]["id"],
        "content": "Refund issued",
        "isAdmin": True,
        "createdAt": user_view["replies"][-1]["createdAt"],
    }


def test_email_failure_does_not_fail_admin_reply(app_module, client, monkeypatch):
    def boom(ticket, message):
        raise OSError("smtp down")

    monkeypatch.setattr(app_module, "send_support_reply_email", boom)

    create_user(app_module, USER_PHONE)
    login(client, app_module, USER_PHONE)
    ticket_id = _open_ticket(client).get_json()["ticketId"]

    admin = app_module.app.test_client()
    create_user(app_module, ADMIN_PHONE, app_module.RoleEnum.admin)
    login(admin, app_module, ADMIN_PHONE)

    resp = admin.post(f"/api/admin/tickets/{ticket_id}/replies", json={"message": "On it"})
    assert resp.status_code == 200


def test_resolved_ticket_refuses_user_replies(app_module, client):
    create_user(app_module, USER_PHONE)
    login(client, app_module, USER_PHONE)
    ticket_id = _open_ticket(client).get_json()["ticketId"]

    admin = app_module.app.test_client()
    create_user(app_module, ADMIN_PHONE, app_module.RoleEnum.admin)
    login(admin, app_module, ADMIN_PHONE)
    resp = admin.put(f"/api/admin/tickets/{ticket_id}", json={"status": "RESOLVED", "priority": "high"})
    assert resp.status_code == 200
    assert resp.get_json()["ticket"]["priority"] == "High"

    resp = client.post(f"/api/support/tickets/{ticket_id}/replies", json={"content": "still broken"})
    assert resp.status_code == 400

    stats = admin.get("/api/admin/tickets/stats").get_json()["stats"]
    assert stats["RESOLVED"] == 1
    assert stats["total"] == 1

    assert admin.post(f"/api/admin/tickets/{ticket_id}/close").get_json()["ticket"]["status"] == "CLOSED"
