MOD_BODY = {
    "title": "X",
    "description": "A mod",
    "imageUrl": "/uploads/x.png",
    "downloadUrl": "https://example.com/x.zip",
    "tags": ["a", "b"],
}


def test_create_rate_and_fetch(client, admin_headers):
    res = client.post("/api/mods", json=MOD_BODY, headers=admin_headers)
    assert res.status_code == 201
    mod = res.json()
    assert mod["rating"] == 0 and mod["numRatings"] == 0
    assert mod["averageRating"] == 0
    assert mod["tags"] == ["a", "b"]

    assert client.post(f"/api/mods/{mod['id']}/rate", json={"rating": 5}).status_code == 200
    assert client.post(f"/api/mods/{mod['id']}/rate", json={"rating": 3}).status_code == 200

    fetched = client.get(f"/api/mods/{mod['id']}").json()
    assert fetched["rating"] == 8
    assert fetched["numRatings"] == 2
    assert fetched["averageRating"] == 4.0


def test_rating_out_of_range(client, mod):
    for bad in (0, 6, "five"):
        res = client.post(f"/api/mods/{mod.id}/rate", json={"rating": bad})
        assert res.status_code == 400
        assert "rating" in res.json()["message"]


def test_rate_unknown_mod(client):
    res = client.post("/api/mods/999/rate", json={"rating": 4})
    assert res.status_code == 404
    assert res.json() == {"message": "Mod not found"}


def test_create_mod_requires_admin(client, user_headers):
    assert client.post("/api/mods", json=MOD_BODY).status_code == 401
    assert client.post("/api/mods", json=MOD_BODY, headers=user_headers).status_code == 403


def test_create_mod_validation(client, admin_headers):
    res = client.post("/api/mods", json={"title": "only a title"}, headers=admin_headers)
    assert res.status_code == 400
    assert "description" in res.json()["message"]


def test_list_and_search(client, storage, mod):
    assert [m["id"] for m in client.get("/api/mods").json()] == [mod.id]
    assert [m["id"] for m in client.get("/api/mods", params={"q": "NATURE"}).json()] == [mod.id]
    assert client.get("/api/mods", params={"q": "racing"}).json() == []
    assert [m["id"] for m in client.get("/api/mods/search", params={"q": "trees"}).json()] == [mod.id]
    assert len(client.get("/api/mods/search").json()) == 1


def test_update_and_delete_mod(client, admin_headers, mod):
    res = client.put(f"/api/mods/{mod.id}", json={"title": "Even Better Trees"}, headers=admin_headers)
    assert res.status_code == 200
    assert res.json()["title"] == "Even Better Trees"

    assert client.delete(f"/api/mods/{mod.id}", headers=admin_headers).status_code == 204
    assert client.get(f"/api/mods/{mod.id}").status_code == 404
    assert client.delete(f"/api/mods/{mod.id}", headers=admin_headers).status_code == 404


def test_comment_thread(client, mod):
    res = client.post(f"/api/mods/{mod.id}/comments", json={"name": "ann", "content": "great"})
    assert res.status_code == 201
    top = res.json()
    assert top["userId"] is None and top["isReported"] is False

    res = client.post(
        f"/api/mods/{mod.id}/comments",
        json={"name": "bob", "content": "agreed", "replyToId": top["id"]},
    )
    assert res.status_code == 201
    reply = res.json()

    replies = client.get(f"/api/comments/{top['id']}/replies").json()
    assert [c["id"] for c in replies] == [reply["id"]]
    assert len(client.get(f"/api/mods/{mod.id}/comments").json()) == 2


def test_reply_must_target_top_level_comment(client, mod):
    top = client.post(f"/api/mods/{mod.id}/comments", json={"name": "a", "content": "1"}).json()
    reply = client.post(
        f"/api/mods/{mod.id}/comments", json={"name": "b", "content": "2", "replyToId": top["id"]}
    ).json()

    nested = client.post(
        f"/api/mods/{mod.id}/comments", json={"name": "c", "content": "3", "replyToId": reply["id"]}
    )
    assert nested.status_code == 400
    dangling = client.post(f"/api/mods/{mod.id}/comments", json={"name": "c", "content": "3", "replyToId": 999})
    assert dangling.status_code == 400


def test_comment_on_unknown_mod(client):
    res = client.post("/api/mods/999/comments", json={"name": "a", "content": "b"})
    assert res.status_code == 404


def test_logged_in_comment_records_user(client, user_headers, mod):
    res = client.post(f"/api/mods/{mod.id}/comments", json={"name": "alice", "content": "hi"}, headers=user_headers)
    me = client.get("/api/user", headers=user_headers).json()
    assert res.json()["userId"] == me["id"]


def test_report_and_resolve_comment(client, admin_headers, mod):
    comment = client.post(f"/api/mods/{mod.id}/comments", json={"name": "a", "content": "spam"}).json()

    assert client.post(f"/api/comments/{comment['id']}/report", json={}).status_code == 400
    res = client.post(f"/api/comments/{comment['id']}/report", json={"reportReason": "spam"})
    assert res.status_code == 200
    assert res.json()["isReported"] is True

    reported = client.get("/api/comments/reported", headers=admin_headers).json()
    assert [(c["id"], c["isResolved"]) for c in reported] == [(comment["id"], False)]

    res = client.put(f"/api/comments/{comment['id']}/resolve", headers=admin_headers)
    assert res.json()["isResolved"] is True

    reported = client.get("/api/comments/reported", headers=admin_headers).json()
    assert [(c["id"], c["isResolved"]) for c in reported] == [(comment["id"], True)]
    assert client.get("/api/comments/reported", params={"unresolved": "true"}, headers=admin_headers).json() == []


def test_report_unknown_comment(client):
    res = client.post("/api/comments/999/report", json={"reportReason": "x"})
    assert res.status_code == 404


def test_reported_comments_admin_only(client, user_headers):
    assert client.get("/api/comments/reported", headers=user_headers).status_code == 403
    assert client.put("/api/comments/1/resolve", headers=user_headers).status_code == 403
