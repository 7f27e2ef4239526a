def _open_ticket(client, headers, subject="Broken download"):
    res = client.post("/api/support", json={"subject": subject, "message": "The link 404s"}, headers=headers)
    assert res.status_code == 201
    return res.json()


def test_create_ticket_needs_login(client):
    res = client.post("/api/support", json={"subject": "a", "message": "b"})
    assert res.status_code == 401


def test_ticket_defaults(client, user_headers):
    ticket = _open_ticket(client, user_headers)
    me = client.get("/api/user", headers=user_headers).json()
    assert ticket["status"] == "pendente"
    assert ticket["userId"] == me["id"]
    assert ticket["responseMessage"] is None
    assert ticket["resolvedAt"] is None


def test_users_see_only_their_tickets(client, admin_headers, user_headers):
    mine = _open_ticket(client, user_headers)
    theirs = _open_ticket(client, admin_headers, subject="Admin ticket")

    assert [t["id"] for t in client.get("/api/support", headers=user_headers).json()] == [mine["id"]]
    assert [t["id"] for t in client.get("/api/support", headers=admin_headers).json()] == [mine["id"], theirs["id"]]

    assert client.get(f"/api/support/{mine['id']}", headers=user_headers).status_code == 200
    assert client.get(f"/api/support/{theirs['id']}", headers=user_headers).status_code == 403
    assert client.get("/api/support/999", headers=admin_headers).status_code == 404


def test_admin_resolves_ticket(client, admin_headers, user_headers):
    ticket = _open_ticket(client, user_headers)

    res = client.put(
        f"/api/support/{ticket['id']}",
        json={"status": "em_andamento", "responseMessage": "Checking"},
        headers=admin_headers,
    )
    assert res.json()["status"] == "em_andamento"
    assert res.json()["resolvedAt"] is None

    res = client.put(f"/api/support/{ticket['id']}", json={"status": "resolvido"}, headers=admin_headers)
    body = res.json()
    assert body["status"] == "resolvido"
    assert body["responseMessage"] == "Checking"
    assert body["resolvedAt"] is not None


def test_ticket_update_validation_and_auth(client, admin_headers, user_headers):
    ticket = _open_ticket(client, user_headers)
    assert client.put(f"/api/support/{ticket['id']}", json={"status": "resolvido"}, headers=user_headers).status_code == 403
    res = client.put(f"/api/support/{ticket['id']}", json={"status": "closed"}, headers=admin_headers)
    assert res.status_code == 400
    assert client.put("/api/support/999", json={"status": "resolvido"}, headers=admin_headers).status_code == 404


def test_status_endpoint(client, mod):
    body = client.get("/api/status").json()
    assert body["status"] == "ok"
    assert body["storage"]["mods"] == 1
    assert body["storage"]["users"] == 1
