import datetime
import re

import pytest

from autocrud import EntitySchema, FieldKind, FieldSpec, GenerationError, SemanticHint, SyntheticRecordGenerator
from autocrud.generator import infer_hint
from autocrud.ids import is_valid_id

PRODUCTS = {
    "title": {"type": "string", "required": True, "minlength": 10, "maxlength": 30},
    "sku": {"type": "string", "unique": True, "match": r"^\d+$", "minlength": 8, "maxlength": 8},
    "homepage": {"type": "string", "match": r"^https?://[a-z0-9.-]+\.[a-z]{2,}(/\S*)?$", "maxlength": 60},
    "slogan": {"type": "string", "match": r"^[A-Za-z\s]+$", "minlength": 12, "maxlength": 40},
    "code": {"type": "string", "match": r"^[A-Z]{3}-[0-9]{4}$"},
    "price": {"type": "number", "min": 0.5, "max": 99.5},
    "stock": {"type": "number", "min": 1, "max": 5},
    "available": "boolean",
    "released": "date",
    "seller": {"type": "reference", "ref": "users"},
    "keywords": "array",
}


@pytest.fixture
def products():
    return EntitySchema.from_dict("products", PRODUCTS)


def test_records_satisfy_their_fields(products, users_schema):
    for schema in (products, users_schema):
        generator = SyntheticRecordGenerator(schema, seed=7)
        for record in generator.records(25):
            assert list(record) == list(schema)
            for name, spec in schema.items():
                assert spec.check(name, record[name]) is None, (name, record[name])


def test_value_types(products):
    record = SyntheticRecordGenerator(products, seed=1).record()
    assert isinstance(record["available"], bool)
    assert isinstance(record["released"], datetime.datetime)
    assert record["released"] < datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)
    assert is_valid_id(record["seller"])
    assert 1 <= len(record["keywords"]) <= 3
    assert isinstance(record["stock"], int)
    assert isinstance(record["price"], float)
    assert re.fullmatch(r"\d{8}", record["sku"])
    assert re.fullmatch(r"[A-Z]{3}-[0-9]{4}", record["code"])


def test_seed_is_reproducible(products):
    first = SyntheticRecordGenerator(products, seed=3).records(3)
    second = SyntheticRecordGenerator(products, seed=3).records(3)
    for a, b in zip(first, second):
        assert {k: v for k, v in a.items() if k not in ("seller", "released")} == {
            k: v for k, v in b.items() if k not in ("seller", "released")
        }


def test_infer_hint():
    assert infer_hint(r"^\S+@\S+\.\S+$") == SemanticHint.EMAIL
    assert infer_hint(r"^https?://.+$") == SemanticHint.URL
    assert infer_hint(r"^\d{5}$") == SemanticHint.NUMERIC
    assert infer_hint(r"^[A-Za-z\s]+$") == SemanticHint.FREE_TEXT
    assert infer_hint(r"^[A-Z]{3}$") is None


def test_failed_heuristic_falls_back_to_pattern():
    # no words-only value matches, the value is generated from the pattern
    schema = EntitySchema("notes", {"body": FieldSpec(FieldKind.STRING, pattern=r"^[a-z ]+\d+$", hint=SemanticHint.FREE_TEXT)})
    value = SyntheticRecordGenerator(schema, seed=11).record()["body"]
    assert re.search(r"^[a-z ]+\d+$", value)


def test_text_without_pattern():
    schema = EntitySchema("notes", {"body": FieldSpec(FieldKind.STRING, min_length=40, max_length=60)})
    for record in SyntheticRecordGenerator(schema, seed=5).records(10):
        assert 40 <= len(record["body"]) <= 60


def test_unsatisfiable_field():
    schema = EntitySchema("codes", {"code": FieldSpec(FieldKind.STRING, pattern=r"^[A-Z]{3}$", min_length=4)})
    with pytest.raises(GenerationError):
        SyntheticRecordGenerator(schema, seed=1).record()


def test_text_of_fixed_length_is_trimmed():
    schema = EntitySchema("notes", {"body": FieldSpec(FieldKind.STRING, min_length=20, max_length=20)})
    for seed in range(20):
        body = SyntheticRecordGenerator(schema, seed=seed).record()["body"]
        assert len(body) == 20
        assert body == body.strip()
