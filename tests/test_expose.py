import io

import pytest

from autocrud import ConfigurationError, CrudAPI, EntitySchema, FieldKind, FieldSpec, RouteRule
from autocrud.rules import OperationKind

MEMBERS = {
    "name": {"type": "string", "required": True, "minlength": 3},
    "email": {"type": "string", "required": True, "unique": True},
    "active": {"type": "boolean", "default": True},
}

MEMBER_ROUTES = [
    {"method": "POST", "paths": ["/"], "operation": "create", "request_content_type": "application/json"},
    {"method": "GET", "paths": ["/"], "operation": "list", "response_pipeline": [{"$project": {"name": 1}}]},
    {
        "method": "GET",
        "paths": ["/:id"],
        "operation": "get",
        "response_pipeline": [{"$match": {"active": True}}, {"$project": {"email": 0}}],
    },
    {"method": "POST", "paths": ["/seed"], "operation": "create_dummy", "validation_enabled": False},
]


@pytest.fixture
def members_api(app, db):
    api = CrudAPI(app, db, prefix="/v1")
    api.expose("members", MEMBERS, MEMBER_ROUTES)
    db.create_all()
    return api


@pytest.fixture
def members(app, members_api):
    client = app.test_client()
    for name, active in (("Anna", True), ("Bert", False), ("Carl", True)):
        response = client.post("/v1/members/", json={"name": name, "email": f"{name.lower()}@example.com", "active": active})
        assert response.status_code == 201
    return client


def test_declared_routes_only(members):
    assert members.patch("/v1/members/anything", json={"name": "x"}).status_code == 405
    assert members.get("/v1/members/list").status_code == 400
    routes = members.get("/v1/routes").get_json()["data"]
    assert routes == {"members": {"POST": ["/v1/members/", "/v1/members/seed"], "GET": ["/v1/members/", "/v1/members/<id>"]}}


def test_list_pipeline(members):
    body = members.get("/v1/members/?sort=name").get_json()
    assert body["data"] == [{"id": record["id"], "name": record["name"]} for record in body["data"]]
    assert [record["name"] for record in body["data"]] == ["Anna", "Bert", "Carl"]
    assert body["pagination"]["total"] == 3
    body = members.get("/v1/members/?active=false").get_json()
    assert [record["name"] for record in body["data"]] == ["Bert"]


def test_sort_on_a_field_dropped_by_the_projection(members):
    body = members.get("/v1/members/?sort=-email").get_json()
    assert [record["name"] for record in body["data"]] == ["Carl", "Bert", "Anna"]
    assert "email" not in body["data"][0]


def test_get_pipeline(members):
    records = members.get("/v1/members/?sort=name").get_json()["data"]
    anna, bert = records[0], records[1]
    response = members.get(f"/v1/members/{anna['id']}")
    assert response.status_code == 200
    assert "email" not in response.get_json()["data"]
    assert response.get_json()["data"]["active"] is True
    # the declared filter still applies next to the id
    assert members.get(f"/v1/members/{bert['id']}").status_code == 404


def test_create_response_is_shaped_by_pipeline(app, members_api):
    client = app.test_client()
    response = client.post("/v1/members/", json={"name": "Dora", "email": "dora@example.com"})
    # the create route declares no pipeline
    assert set(response.get_json()["data"]) == {"id", "name", "email", "active", "created_at", "updated_at"}


def test_dummy_without_pattern(app, members_api):
    response = app.test_client().post("/v1/members/seed?count=2")
    assert response.status_code == 201
    assert len(response.get_json()["data"]) == 2


def test_default_routes_warning(app, db, caplog):
    api = CrudAPI(app, db)
    api.expose("notes", {"title": "string"})
    assert any("using the default routes" in record.getMessage() for record in caplog.records)
    assert "/api/notes/create/dummy" in api.routes_listing()["notes"]["POST"]


def test_expose_errors(app, db):
    api = CrudAPI(app, db)
    api.expose("notes", {"title": "string"})
    with pytest.raises(ConfigurationError):
        api.expose("notes", {"title": "string"})
    with pytest.raises(ConfigurationError):
        api.expose("routes", {"title": "string"})
    with pytest.raises(ConfigurationError):
        api.expose("tags", {"label": "string"}, [{"method": "GET", "paths": ["/", "/"], "operation": "list"}, {"method": "GET", "paths": ["/"], "operation": "get"}])


def test_expose_schema_object(app, db):
    api = CrudAPI(app, db)
    schema = EntitySchema("cities", {"name": FieldSpec(FieldKind.STRING, required=True)}, label="City")
    rules = [RouteRule("POST", "/", OperationKind.CREATE), RouteRule("GET", "/<id>", OperationKind.GET)]
    model = api.expose("cities", schema, rules)
    db.create_all()
    assert api.registry.get("cities") is model
    client = app.test_client()
    response = client.post("/api/cities/", json={"name": "Ghent"})
    assert response.get_json()["status"]["message"].startswith("Success: New City created")


def test_upload_rules(app, db):
    api = CrudAPI(app, db)
    rules = [
        {
            "method": "POST",
            "paths": ["/"],
            "operation": "create",
            "upload_rules": {"avatar": {"maxSize": 1, "allowedTypes": ["image/png"], "required": True}},
        }
    ]
    api.expose("profiles", {"name": {"type": "string", "required": True}, "age": "number"}, rules)
    db.create_all()
    client = app.test_client()

    def post(content, filename="a.png", mimetype="image/png"):
        data = {"name": "Alice", "age": "31", "avatar": (io.BytesIO(content), filename, mimetype)}
        return client.post("/api/profiles/", data=data, content_type="multipart/form-data")

    response = post(b"x" * 2048)
    assert response.status_code == 400
    assert response.get_json()["errors"] == [{"field": "avatar", "message": '"a.png" is larger than 1 KB'}]
    assert post(b"x", "a.gif", "image/gif").status_code == 400
    response = post(b"x" * 100)
    assert response.status_code == 201
    assert response.get_json()["data"]["age"] == 31
    response = client.post("/api/profiles/", data={"name": "Alice"}, content_type="multipart/form-data")
    assert response.status_code == 400
    assert response.get_json()["errors"] == [{"field": "avatar", "message": "avatar is required"}]
