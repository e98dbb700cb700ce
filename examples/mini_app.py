#!/usr/bin/env python
# run:
# $ FLASK_APP=mini_app flask run
from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from autocrud import CrudAPI, EntitySchema, FieldKind, FieldSpec

db = SQLAlchemy()

users = EntitySchema(
    "users",
    {
        "name": FieldSpec(FieldKind.STRING, required=True, min_length=(3, "Name is too short")),
        "email": FieldSpec(FieldKind.STRING, required=True, unique=True, pattern=(r"^\S+@\S+$", "Invalid email")),
    },
)


def create_app():
    app = Flask("mini_app")
    app.config.update(SQLALCHEMY_DATABASE_URI="sqlite:///mini_app.sqlitedb")
    db.init_app(app)
    with app.app_context():
        api = CrudAPI(app, db, prefix="/my_api")
        api.expose("users", users)
        db.create_all()
    return app


app = create_app()

if __name__ == "__main__":
    app.run()
