from bson import ObjectId


def create_community(client, user, name="Deep Work Club"):
    r = client.post("/api/community", json={"name": name, "description": "Focus together", "tags": ["work"]},
                    headers=user["headers"])
    assert r.status_code == 201, r.text
    return r.json()["community"]


def test_create_requires_name(client, user):
    r = client.post("/api/community", json={"name": "  "}, headers=user["headers"])
    assert r.status_code == 400
    assert r.json()["message"] == "Community name is required"


def test_creator_is_first_member_and_membership_is_a_set(client, make_user):
    owner, other = make_user(), make_user()
    community = create_community(client, owner)
    assert community["members"] == [owner["id"]]

    for _ in range(2):
        r = client.post(f"/api/community/{community['id']}/join", headers=other["headers"])
        assert r.status_code == 200
    assert r.json()["community"]["members"] == [owner["id"], other["id"]]

    listing = client.get("/api/community").json()
    assert listing["communities"][0]["memberCount"] == 2
    assert listing["communities"][0]["creator"]["name"] == owner["name"]

    r = client.post(f"/api/community/{community['id']}/leave", headers=other["headers"])
    assert r.json()["community"]["members"] == [owner["id"]]


def test_join_unknown_community(client, user):
    r = client.post(f"/api/community/{ObjectId()}/join", headers=user["headers"])
    assert r.status_code == 404
    assert r.json()["message"] == "Community not found"


def test_post_feed_shape(client, make_user):
    author, reader = make_user(name="Posting Person"), make_user()
    community = create_community(client, author)

    r = client.post(f"/api/community/{community['id']}/posts", json={"content": ""}, headers=author["headers"])
    assert r.status_code == 400
    assert r.json()["message"] == "Post content is required"

    r = client.post(f"/api/community/{community['id']}/posts",
                    json={"content": "Finished a 90 minute block", "tags": ["win"]}, headers=author["headers"])
    assert r.status_code == 201
    post = r.json()["post"]
    assert post["authorName"] == "Posting Person"
    assert post["authorAvatar"] == "\U0001F464"
    assert post["likes"] == 0 and post["comments"] == 0 and post["liked"] is False

    feed = client.get(f"/api/community/{community['id']}/posts").json()
    assert feed["count"] == 1
    assert feed["posts"][0]["content"] == "Finished a 90 minute block"

    r = client.post(f"/api/community/posts/{post['id']}/like", headers=reader["headers"])
    assert r.json()["message"] == "Post liked"
    assert r.json()["post"]["likes"] == 1

    feed = client.get(f"/api/community/{community['id']}/posts", headers=reader["headers"]).json()
    assert feed["posts"][0]["liked"] is True
    anonymous = client.get(f"/api/community/{community['id']}/posts").json()
    assert anonymous["posts"][0]["liked"] is False

    r = client.post(f"/api/community/posts/{post['id']}/like", headers=reader["headers"])
    assert r.json()["message"] == "Post unliked"
    assert r.json()["post"]["likes"] == 0


def test_posting_to_unknown_community(client, user):
    r = client.post(f"/api/community/{ObjectId()}/posts", json={"content": "hello"}, headers=user["headers"])
    assert r.status_code == 404


def test_comments(client, user):
    community = create_community(client, user)
    post = client.post(f"/api/community/{community['id']}/posts", json={"content": "hi"},
                       headers=user["headers"]).json()["post"]

    r = client.post(f"/api/community/posts/{post['id']}/comments", json={"text": " "}, headers=user["headers"])
    assert r.status_code == 400
    assert r.json()["message"] == "Comment text is required"

    r = client.post(f"/api/community/posts/{post['id']}/comments", json={"text": "Nice"}, headers=user["headers"])
    assert r.status_code == 201
    assert r.json()["post"]["comments"] == 1

    r = client.post(f"/api/community/posts/{ObjectId()}/comments", json={"text": "Nice"}, headers=user["headers"])
    assert r.status_code == 404
    assert r.json()["message"] == "Post not found"
