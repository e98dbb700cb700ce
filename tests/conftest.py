import pytest
from flask import Flask
from flask_sqlalchemy import SQLAlchemy

from autocrud import CrudAPI, EntitySchema

USERS = {
    "name": {
        "type": "string",
        "required": [True, "Name is required"],
        "match": [r"^[A-Za-z\s]+$", "Name can only contain letters and spaces"],
        "minlength": [3, "Name must be at least 3 characters"],
        "maxlength": [50, "Name cannot exceed 50 characters"],
    },
    "email": {
        "type": "string",
        "required": True,
        "unique": True,
        "match": [r"^[^\s@]+@[^\s@]+\.[^\s@]+$", "Invalid email format"],
        "hint": "email",
    },
    "age": {"type": "number", "min": [18, "Age must be at least 18"], "max": [120, "Age cannot exceed 120"]},
    "active": {"type": "boolean", "default": True},
    "tags": {"type": "array"},
}

ORDERS = {
    "user": {"type": "reference", "ref": "users", "required": True},
    "total": {"type": "number", "required": True, "min": 0},
    "note": {"type": "string", "maxlength": 40},
}


@pytest.fixture
def users_schema():
    return EntitySchema.from_dict("users", USERS)


@pytest.fixture
def orders_schema():
    return EntitySchema.from_dict("orders", ORDERS)


@pytest.fixture
def app():
    app = Flask(__name__)
    app.config.update(TESTING=True, SQLALCHEMY_DATABASE_URI="sqlite://", SQLALCHEMY_TRACK_MODIFICATIONS=False)
    return app


@pytest.fixture
def db(app):
    # a new SQLAlchemy instance per test, so every test declares its own models
    db = SQLAlchemy()
    db.init_app(app)
    with app.app_context():
        yield db
        db.session.remove()
        db.drop_all()


@pytest.fixture
def api(app, db):
    api = CrudAPI(app, db, prefix="/api")
    api.expose_config({"users": {"schema": USERS}, "orders": {"schema": ORDERS}})
    db.create_all()
    return api


@pytest.fixture
def client(app, api):
    return app.test_client()


@pytest.fixture
def create_user(client):
    def create(name="Alice Smith", email="alice@example.com", **fields):
        response = client.post("/api/users/", json={"name": name, "email": email, **fields})
        assert response.status_code == 201, response.get_json()
        return response.get_json()["data"]

    return create
