import datetime
import json
import logging

from autocrud import ConflictError, InternalError, NotFoundError, ValidationError
from autocrud.config import get_config, get_int_config, is_debug
from autocrud.errors import HIDDEN_LOG
from autocrud.formatting import format_response, pagination, parse_pagination, parse_sort
from autocrud.json_encoder import CrudJSONEncoder

import autocrud


def test_error_messages():
    assert ValidationError("Invalid").message == "Bad Request: Invalid"
    assert NotFoundError("gone", missing=["a"]).missing == ["a"]
    conflict = ConflictError("User", "email", "a@b.c")
    assert conflict.status_code == 409
    assert str(conflict) == 'Conflict: User with email "a@b.c" already exists.'


def test_internal_error_detail():
    assert InternalError("boom").message == f"Internal Error: {HIDDEN_LOG}"
    level = autocrud.log.level
    autocrud.log.setLevel(logging.DEBUG)
    try:
        assert is_debug()
        assert InternalError("boom").message == "Internal Error: boom"
    finally:
        autocrud.log.setLevel(level)


def test_format_response():
    assert format_response("GET /x", True, "ok") == {"meta": {"route": "GET /x"}, "status": {"success": True, "message": "ok"}}
    result = format_response("GET /x", False, "no", data=[], errors=[{"field": "a", "message": "b"}])
    assert result["data"] == [] and result["errors"]


def test_pagination_helpers(app):
    assert pagination(12, 2, 5) == {"total": 12, "totalPages": 3, "currentPage": 2}
    assert pagination(0, 1, 10)["totalPages"] == 0
    assert parse_pagination() == (1, 10)
    assert parse_pagination("0", "5000") == (1, 1000)
    with app.app_context():
        app.config["MAX_PAGE_LIMIT"] = 50
        assert parse_pagination("3", "100") == (3, 50)


def test_parse_sort():
    assert parse_sort(None, ["created_at"]) == {"created_at": -1, "id": 1}
    assert parse_sort("-age, name,bogus,+id", ["age", "name", "id"]) == {"age": -1, "name": 1, "id": 1}


def test_config_fallbacks(app, monkeypatch):
    assert get_config("DEFAULT_SORT") == "-created_at"
    monkeypatch.setenv("AUTOCRUD_EXTRA", "yes")
    assert get_config("AUTOCRUD_EXTRA") == "yes"
    with app.app_context():
        app.config["DUMMY_MAX_COUNT"] = "many"
        assert get_int_config("DUMMY_MAX_COUNT") == 1000


def test_json_encoder():
    value = {"when": datetime.datetime(2024, 1, 2, 3, 4, 5), "tags": {"a"}, "day": datetime.date(2024, 1, 2)}
    assert json.loads(json.dumps(value, cls=CrudJSONEncoder)) == {"when": "2024-01-02T03:04:05", "tags": ["a"], "day": "2024-01-02"}
