def test_posts_listing_is_public(client):
    resp = client.get("/api/posts")
    assert resp.status_code == 200
    assert resp.json() == []


def test_create_post_requires_session(client):
    resp = client.post("/api/posts", json={"title": "t", "content": "c", "category": "free"})
    assert resp.status_code == 401


def test_post_with_comments(client, login):
    login("writer@example.org")
    post = client.post("/api/posts", json={"title": "Bedtime", "content": "Any tips?", "category": "worry"})
    assert post.status_code == 201
    post_id = post.json()["id"]
    assert post.json()["views"] == 0

    login("helper@example.org")
    c1 = client.post(f"/api/posts/{post_id}/comments", json={"content": "Routine helps"})
    c2 = client.post(f"/api/posts/{post_id}/comments", json={"content": "Dim the lights"})
    assert c1.status_code == 201 and c2.status_code == 201
    assert c1.json()["postId"] == post_id

    detail = client.get(f"/api/posts/{post_id}").json()
    assert detail["title"] == "Bedtime"
    assert detail["user"] == {"firstName": "writer"}
    assert [c["content"] for c in detail["comments"]] == ["Dim the lights", "Routine helps"]
    assert detail["comments"][0]["user"] == {"firstName": "helper"}

    listed = client.get("/api/posts").json()
    assert listed[0]["id"] == post_id
    assert listed[0]["user"]["firstName"] == "writer"


def test_missing_post_is_404(client, login):
    assert client.get("/api/posts/55").status_code == 404
    login()
    assert client.post("/api/posts/55/comments", json={"content": "hi"}).status_code == 404


def test_post_validation(client, login):
    login()
    resp = client.post("/api/posts", json={"title": "", "content": "c"})
    assert resp.status_code == 400
    fields = {e["field"] for e in resp.json()["errors"]}
    assert {"title", "category"} <= fields


def test_post_category_must_be_known(client, login):
    login()
    resp = client.post("/api/posts", json={"title": "t", "content": "c", "category": "ads"})
    assert resp.status_code == 400
    assert resp.json()["errors"][0]["field"] == "category"
