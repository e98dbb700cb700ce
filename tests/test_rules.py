import pytest

from autocrud import ConfigurationError, OperationKind, RouteRule, StageKind, UploadRule, default_rules
from autocrud.rules import check_rules, normalize_path, rules_from_config


def test_rule_from_dict():
    rule = RouteRule.from_dict(
        {
            "method": "get",
            "paths": ["/:id", "/show/:id"],
            "operation": "get",
            "response_pipeline": [{"$project": {"email": 0}}],
        }
    )
    assert rule.method == "GET"
    assert rule.paths == ("/<id>", "/show/<id>")
    assert rule.operation == OperationKind.GET
    assert rule.response_pipeline[0].kind == StageKind.PROJECT
    assert not rule.has_body


def test_operation_names():
    assert OperationKind.parse("deleteMany") == OperationKind.DELETE_MANY
    assert OperationKind.parse("create-dummy") == OperationKind.CREATE_DUMMY
    with pytest.raises(ConfigurationError):
        OperationKind.parse("upsert")


@pytest.mark.parametrize(
    "definition",
    [
        {"method": "GET", "paths": [], "operation": "list"},
        {"method": "HEAD", "paths": ["/"], "operation": "list"},
        {"method": "GET", "paths": ["/"], "operation": "list", "cache": True},
        {"method": "GET", "paths": [""], "operation": "list"},
    ],
)
def test_invalid_rules(definition):
    with pytest.raises(ConfigurationError):
        RouteRule.from_dict(definition)


def test_duplicate_routes():
    rules = rules_from_config(
        [
            {"method": "GET", "path": "/<id>", "operation": "get"},
            {"method": "GET", "paths": ["/:pk"], "operation": "list"},
        ]
    )
    with pytest.raises(ConfigurationError):
        check_rules("users", rules)


def test_default_rules():
    rules = default_rules()
    check_rules("users", rules)
    operations = [rule.operation for rule in rules]
    assert sorted(operations) == sorted(OperationKind)
    create = rules[0]
    assert create.paths[:2] == ("/", "/create")
    assert create.request_content_type == "application/json"
    dummy = next(rule for rule in rules if rule.operation == OperationKind.CREATE_DUMMY)
    assert not dummy.validation_enabled
    assert "/create/dummy" in dummy.paths


def test_upload_rules():
    rule = RouteRule.from_dict(
        {
            "method": "POST",
            "paths": ["/"],
            "operation": "create",
            "upload_rules": {"avatar": {"maxSize": 100, "allowedTypes": ["image/png"]}},
        }
    )
    upload = rule.upload_rules["avatar"]
    assert upload == UploadRule(max_size=100, allowed_types=("image/png",))
    assert upload.max_files == 1
    with pytest.raises(ConfigurationError):
        UploadRule.from_dict({"maxsize": 1})


def test_normalize_path():
    assert normalize_path("list") == "/list"
    assert normalize_path("/:user_id/orders") == "/<user_id>/orders"
