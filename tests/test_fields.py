import pytest

from autocrud import ConfigurationError, EntitySchema, FieldKind, FieldSpec, SemanticHint
from autocrud.fields import Constraint, sentence_case


def test_declarative_field(users_schema):
    name = users_schema["name"]
    assert name.kind == FieldKind.STRING
    assert name.required
    assert name.required_message == "Name is required"
    assert name.pattern == Constraint(r"^[A-Za-z\s]+$", "Name can only contain letters and spaces")
    assert name.min_length.value == 3
    assert users_schema["email"].hint == SemanticHint.EMAIL
    assert users_schema["email"].required_message is None
    assert users_schema["age"].minimum == Constraint(18, "Age must be at least 18")
    assert users_schema["tags"].kind == FieldKind.ARRAY_OF_STRING


def test_schema_properties(users_schema, orders_schema):
    assert list(users_schema) == ["name", "email", "age", "active", "tags"]
    assert users_schema.label == "User"
    assert users_schema.unique_fields == ("email",)
    assert users_schema.required_fields == ("name", "email")
    assert users_schema.numeric_fields == ("age",)
    assert orders_schema.reference_fields == ("user",)
    with pytest.raises(TypeError):
        users_schema["x"] = FieldSpec()


def test_kind_aliases():
    assert FieldKind.parse("int") == FieldKind.NUMBER
    assert FieldKind.parse(str) == FieldKind.STRING
    assert FieldKind.parse(["string"]) == FieldKind.ARRAY_OF_STRING
    assert FieldKind.parse("ObjectId") == FieldKind.REFERENCE
    assert FieldKind.parse("geometry") == FieldKind.ANY


def test_shortcut_definition():
    schema = EntitySchema.from_dict("notes", {"title": "string", "score": "number"})
    assert schema["title"].kind == FieldKind.STRING
    assert schema["score"].kind == FieldKind.NUMBER
    assert not schema["title"].required


@pytest.mark.parametrize(
    "kwargs",
    [
        {"kind": FieldKind.NUMBER, "pattern": "^a"},
        {"kind": FieldKind.STRING, "minimum": 1},
        {"kind": FieldKind.STRING, "reference_target": "users"},
        {"kind": FieldKind.STRING, "pattern": "(unclosed"},
        {"kind": FieldKind.STRING, "min_length": 5, "max_length": 2},
        {"kind": FieldKind.NUMBER, "minimum": 10, "maximum": 1},
        {"kind": FieldKind.STRING, "hint": "phone"},
        {"kind": FieldKind.BOOLEAN, "hint": "email"},
    ],
)
def test_invalid_field(kwargs):
    with pytest.raises(ConfigurationError):
        FieldSpec(**kwargs)


def test_reserved_names():
    with pytest.raises(ConfigurationError):
        EntitySchema.from_dict("users", {"id": "string"})
    with pytest.raises(ConfigurationError):
        EntitySchema.from_dict("users", {"created_at": "date"})
    with pytest.raises(ConfigurationError):
        EntitySchema.from_dict("users", {"name": {"type": "string", "regex": "x"}})


def test_check_order():
    spec = FieldSpec(FieldKind.STRING, pattern=(r"^[a-z]+$", "lowercase only"), min_length=(3, "too short"))
    # the pattern is checked before the length
    assert spec.check("code", "A") == "lowercase only"
    assert spec.check("code", "ab") == "too short"
    assert spec.check("code", "abc") is None


def test_default_messages():
    spec = FieldSpec(FieldKind.NUMBER, minimum=1, maximum=5)
    assert spec.check("rating", 0, "Review") == "rating of Review must be at least 1"
    assert spec.check("rating", 6) == "rating cannot exceed 5"
    assert spec.missing_message("rating", "Review") == "rating of Review is required"


def test_sentence_case():
    assert sentence_case("users") == "User"
    assert sentence_case("order_items") == "Order item"
    assert sentence_case("address") == "Address"
    assert sentence_case("blogPosts") == "Blog post"


def test_to_dict(users_schema):
    assert users_schema["age"].to_dict()["minimum"] == [18, "Age must be at least 18"]
    assert users_schema["email"].to_dict()["hint"] == "email"
