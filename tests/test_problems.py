from conftest import problem_payload

from trafficreport import problem_store, user_store


def _create(client, **overrides):
    resp = client.post("/api/problems", json=problem_payload(**overrides))
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_requires_authentication_without_touching_the_store(client, monkeypatch):
    def _fail(*args, **kwargs):
        raise AssertionError("store accessed without an identity")

    for name in ("list_problems", "get_problem", "create_problem", "update_problem", "delete_problem"):
        monkeypatch.setattr(problem_store, name, _fail)
    monkeypatch.setattr(user_store, "get_user_by_email", _fail)

    for method, url in [
        ("get", "/api/problems"),
        ("post", "/api/problems"),
        ("get", "/api/problems/abc"),
        ("put", "/api/problems/abc"),
        ("patch", "/api/problems/abc"),
        ("delete", "/api/problems/abc"),
        ("get", "/api/reports/problems"),
        ("get", "/api/reports/problems?status=reseno"),
    ]:
        resp = getattr(client, method)(url)
        assert resp.status_code == 401, (method, url)
        assert resp.json() == {"error": "Authentication required"}

    resp = client.get("/api/problems", headers={"Authorization": "Bearer forged"})
    assert resp.status_code == 401


def test_create_applies_defaults_and_owner(client, alice):
    problem = _create(client, proposedSolution="  Patch it  ", imageUrl="")
    assert problem["title"] == "Pothole on Main St"
    assert problem["problemType"] == "Rupe na putu"
    assert problem["proposedSolution"] == "Patch it"
    assert problem["imageUrl"] is None
    assert problem["priority"] == "srednji"
    assert problem["status"] == "prijavljeno"
    assert problem["latitude"] == 44.8125
    assert problem["user"] == {"name": "Alice", "email": "alice@example.com"}
    assert problem["createdAt"] == problem["updatedAt"]


def test_create_accepts_numeric_strings(client, alice):
    problem = _create(client, latitude="45.25", longitude=" 19.84 ", priority="visok", status="primeceno")
    assert problem["latitude"] == 45.25
    assert problem["longitude"] == 19.84
    assert problem["priority"] == "visok"
    assert problem["status"] == "primeceno"


def test_create_validation_errors(client, alice):
    resp = client.post("/api/problems", json=problem_payload(title="   ", latitude="north"))
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "Title is required."
    assert "Latitude must be a finite number." in body["details"]

    resp = client.post("/api/problems", json=problem_payload(priority="urgent"))
    assert resp.status_code == 400
    assert resp.json()["error"] == "Invalid priority."

    resp = client.post("/api/problems", json=[1, 2, 3])
    assert resp.status_code == 400

    resp = client.post("/api/problems", content=b"{not json", headers={"Content-Type": "application/json"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Request body must be valid JSON."


def test_list_is_newest_first_and_filterable(client, alice):
    first = _create(client, title="First", status="reseno")
    second = _create(client, title="Second")

    resp = client.get("/api/problems")
    assert [p["id"] for p in resp.json()] == [second["id"], first["id"]]

    resp = client.get("/api/problems", params={"status": "reseno"})
    assert [p["title"] for p in resp.json()] == ["First"]

    resp = client.get("/api/problems", params={"status": "svi"})
    assert len(resp.json()) == 2

    resp = client.get("/api/problems", params={"status": "bogus"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Invalid status."
    assert "svi" in resp.json()["details"]["allowed"]


def test_get_round_trip(client, alice):
    created = _create(client)
    resp = client.get(f"/api/problems/{created['id']}")
    assert resp.status_code == 200
    assert resp.json() == created


def test_partial_update_keeps_untouched_fields(client, alice):
    created = _create(client, proposedSolution="Fill it")
    resp = client.patch(f"/api/problems/{created['id']}", json={"status": "reseno", "title": 42})
    assert resp.status_code == 200
    updated = resp.json()
    assert updated["status"] == "reseno"
    assert updated["title"] == created["title"]
    assert updated["proposedSolution"] == "Fill it"
    assert updated["updatedAt"] >= created["updatedAt"]

    resp = client.put(f"/api/problems/{created['id']}", json={"description": "", "latitude": 45})
    assert resp.status_code == 200
    assert resp.json()["description"] is None
    assert resp.json()["latitude"] == 45.0


def test_update_rejects_invalid_values(client, alice):
    created = _create(client)
    for body, message in [
        ({"title": ""}, "Title is required."),
        ({"latitude": None}, "Latitude must be a finite number."),
        ({"longitude": "east"}, "Longitude must be a finite number."),
        ({"status": "closed"}, "Invalid status."),
    ]:
        resp = client.patch(f"/api/problems/{created['id']}", json=body)
        assert resp.status_code == 400, body
        assert resp.json()["error"] == message

    resp = client.get(f"/api/problems/{created['id']}")
    assert resp.json() == created


def test_delete(client, alice):
    created = _create(client)
    resp = client.delete(f"/api/problems/{created['id']}")
    assert resp.status_code == 200
    assert resp.json() == {"message": "Problem deleted"}
    assert client.get(f"/api/problems/{created['id']}").status_code == 404
    assert client.delete(f"/api/problems/{created['id']}").status_code == 404


def test_other_owner_sees_not_found(client, other_client, alice, bob):
    created = _create(client)
    url = f"/api/problems/{created['id']}"

    for resp in [
        other_client.get(url),
        other_client.put(url, json={"title": "Hijacked"}),
        other_client.patch(url, json={"status": "reseno"}),
        other_client.delete(url),
    ]:
        assert resp.status_code == 404
        assert resp.json() == {"error": "Problem not found"}

    assert other_client.get("/api/problems").json() == []
    assert client.get(url).json() == created


def test_store_refuses_unknown_owner(app, client):
    db = app.state.db
    record = problem_store.create_problem(
        db,
        owner_email="nobody@example.com",
        title="Orphan",
        problem_type="Ostalo",
        latitude=1.0,
        longitude=2.0,
    )
    assert record is None
    assert problem_store.list_problems(db, owner_email="nobody@example.com") == []


def test_problem_options(client):
    body = client.get("/api/problem-options").json()
    assert body["statuses"] == {"primeceno": "Noticed", "prijavljeno": "Reported", "reseno": "Resolved"}
    assert body["priorities"]["visok"] == "High"
    assert "Ostalo" in body["problem_types"]
