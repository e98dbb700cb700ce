import datetime

import pytest
from sqlalchemy.exc import IntegrityError

from autocrud import ConfigurationError, EntitySchema, ModelRegistry, StorageValidationError
from autocrud.ids import is_valid_id


@pytest.fixture
def registry(db):
    return ModelRegistry(db)


@pytest.fixture
def User(registry, db, users_schema):
    model = registry.get_or_create("users", users_schema)
    db.create_all()
    return model


def test_get_or_create_is_idempotent(registry, users_schema):
    first = registry.get_or_create("users", users_schema)
    second = registry.get_or_create("users", EntitySchema.from_dict("users", {"other": "string"}))
    assert first is second
    assert first.__tablename__ == "users"
    assert first.__name__ == "Users"
    assert "users" in registry
    assert registry.get("users") is first


def test_registries_share_the_mapped_models(db, registry, users_schema):
    model = registry.get_or_create("users", users_schema)
    assert ModelRegistry(db).get_or_create("users", users_schema) is model


def test_unregistered_entity(registry):
    with pytest.raises(ConfigurationError):
        registry.get("ghosts")


def test_new_record(db, User):
    user = User.new({"name": "Alice Smith", "email": "alice@example.com", "age": 30})
    db.session.add(user)
    db.session.commit()
    record = user.to_dict()
    assert is_valid_id(record["id"])
    assert record["active"] is True
    assert record["age"] == 30 and isinstance(record["age"], int)
    assert list(record) == ["id", "name", "email", "age", "active", "tags", "created_at", "updated_at"]
    assert record["created_at"] is not None


def test_storage_rejects_invalid_values(User):
    with pytest.raises(StorageValidationError) as exc_info:
        User.new({"name": "Alice Smith", "email": "alice@example.com", "age": 200})
    assert exc_info.value.errors == [{"field": "age", "message": "Age cannot exceed 120"}]
    with pytest.raises(StorageValidationError):
        User.new({"name": "Al", "email": "al@example.com"})
    with pytest.raises(StorageValidationError):
        User.new({"name": "Alice Smith", "email": "alice@example.com", "tags": "solo"})
    with pytest.raises(StorageValidationError):
        User.new({"name": "Alice Smith"})
    with pytest.raises(StorageValidationError) as exc_info:
        User.new({"name": "Alice Smith", "email": "alice@example.com", "age": float("nan")})
    assert exc_info.value.errors == [{"field": "age", "message": "age of User must be a number"}]


def test_unique_constraint(db, User):
    db.session.add(User.new({"name": "Alice Smith", "email": "same@example.com"}))
    db.session.commit()
    db.session.add(User.new({"name": "Alice Jones", "email": "same@example.com"}))
    with pytest.raises(IntegrityError):
        db.session.commit()
    db.session.rollback()


def test_update_fields(db, User):
    user = User.new({"name": "Alice Smith", "email": "alice@example.com"})
    db.session.add(user)
    db.session.commit()
    user.update_fields({"age": 44, "unknown": "ignored"})
    db.session.commit()
    assert user.to_dict()["age"] == 44
    with pytest.raises(StorageValidationError):
        user.update_fields({"name": None})


def test_populate(db, registry, User, orders_schema):
    Order = registry.get_or_create("orders", orders_schema)
    db.create_all()
    user = User.new({"name": "Alice Smith", "email": "alice@example.com"})
    db.session.add(user)
    db.session.flush()
    order = Order.new({"user": user.id, "total": 12.5})
    missing = Order.new({"user": "00000000-0000-4000-8000-000000000000", "total": 1})
    db.session.add_all([order, missing])
    db.session.commit()

    records = registry.populate(Order, [order.to_dict(), missing.to_dict()])
    assert records[0]["user"]["email"] == "alice@example.com"
    # dangling references are left as they are
    assert records[1]["user"] == "00000000-0000-4000-8000-000000000000"
    assert registry.populate(Order, [order.to_dict()], fields=())[0]["user"] == user.id


def test_dates_are_stored_in_utc(db, registry):
    Event = registry.get_or_create("events", EntitySchema.from_dict("events", {"starts": "date"}))
    db.create_all()
    offset = datetime.timezone(datetime.timedelta(hours=2))
    event = Event.new({"starts": datetime.datetime(2024, 1, 1, 10, 0, tzinfo=offset)})
    assert event.starts == datetime.datetime(2024, 1, 1, 8, 0)
    db.session.add(event)
    db.session.commit()
    db.session.expire_all()
    assert db.session.get(Event, event.id).starts == datetime.datetime(2024, 1, 1, 8, 0)
    assert Event.new({"starts": "2024-01-01T10:00:00-01:00"}).starts == datetime.datetime(2024, 1, 1, 11, 0)
