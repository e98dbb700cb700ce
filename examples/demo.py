#!/usr/bin/env python
#
# This demo application exposes users, products and orders from a declarative configuration
#
# run:
# $ python demo.py [HOST] [PORT]
#
# try:
# $ curl -X POST http://localhost:5000/api/users/create/dummy?count=5
# $ curl http://localhost:5000/api/users/?sort=-age&limit=2
# $ curl http://localhost:5000/api/routes
#
import sys
import logging
from flask import Flask, redirect
from flask_sqlalchemy import SQLAlchemy
from autocrud import CrudAPI

db = SQLAlchemy()

ENTITIES = {
    "users": {
        "schema": {
            "name": {
                "type": "string",
                "required": [True, "Name is required"],
                "match": [r"^[A-Za-z\s]+$", "Name can only contain letters and spaces"],
                "minlength": [3, "Name must be at least 3 characters"],
                "maxlength": [50, "Name cannot exceed 50 characters"],
            },
            "email": {
                "type": "string",
                "required": [True, "Email is required"],
                "unique": True,
                "match": [r"^[^\s@]+@[^\s@]+\.[^\s@]+$", "Invalid email format"],
                "hint": "email",
            },
            "age": {"type": "number", "min": [18, "Age must be at least 18"], "max": [120, "Age cannot exceed 120"]},
            "website": {"type": "string", "match": [r"^https?://\S+$", "Invalid url"], "hint": "url"},
            "interests": {"type": "array"},
        },
    },
    "products": {
        "schema": {
            "title": {"type": "string", "required": True, "minlength": 5, "maxlength": 60},
            "sku": {"type": "string", "unique": True, "match": r"^\d{8}$", "minlength": 8, "hint": "numeric"},
            "price": {"type": "number", "required": True, "min": 0.01, "max": 10000},
            "in_stock": {"type": "boolean", "default": True},
        },
        "routes": [
            {"method": "POST", "paths": ["/", "/create"], "operation": "create", "request_content_type": "application/json"},
            {"method": "POST", "paths": ["/create/dummy"], "operation": "create_dummy", "validation_enabled": False},
            {
                "method": "GET",
                "paths": ["/", "/list"],
                "operation": "list",
                "response_pipeline": [{"filter": {"in_stock": True}}, {"project": {"title": 1, "price": 1}}],
            },
            {"method": "GET", "paths": ["/:id"], "operation": "get"},
            {"method": "PATCH", "paths": ["/:id"], "operation": "update", "request_content_type": "application/json"},
            {"method": "DELETE", "paths": ["/:id"], "operation": "delete_one"},
        ],
    },
    "orders": {
        "label": "Order",
        "schema": {
            "user": {"type": "reference", "ref": "users", "required": True},
            "product": {"type": "reference", "ref": "products", "required": True},
            "quantity": {"type": "number", "required": True, "min": 1, "max": 100},
            "placed_at": "date",
        },
    },
}


def create_api(app, prefix="/api"):
    api = CrudAPI(app, db, prefix=prefix)
    api.expose_config(ENTITIES)
    db.create_all()
    return api


def create_app():
    app = Flask("autocrud_demo")
    app.config.update(SQLALCHEMY_DATABASE_URI="sqlite://", DEBUG=True)
    db.init_app(app)

    @app.route("/")
    def goto_routes():
        return redirect("/api/routes")

    with app.app_context():
        create_api(app)
    return app


if __name__ == "__main__":
    HOST = sys.argv[1] if len(sys.argv) > 1 else "0.0.0.0"
    PORT = int(sys.argv[2]) if len(sys.argv) > 2 else 5000
    logging.getLogger("autocrud").setLevel(logging.INFO)
    create_app().run(host=HOST, port=PORT, threaded=False)
