"""Declarative entity descriptions.

An :class:`EntitySchema` is an ordered, immutable mapping of field names to
:class:`FieldSpec` instances. Both are plain data: the validators, the storage
models, the generator and the route handlers are all derived from them.

Schemas can be declared in python::

    users = EntitySchema("users", {
        "name": FieldSpec(FieldKind.STRING, required=True, pattern=(r"^[A-Za-z\\s]{3,50}$", "Invalid name")),
        "age": FieldSpec(FieldKind.NUMBER, minimum=18, maximum=120),
    })

or loaded from a dict with :meth:`EntitySchema.from_dict`.
"""

from __future__ import annotations

import math
import re
from collections import OrderedDict
from collections.abc import Mapping
from dataclasses import dataclass, fields as dc_fields
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterator, NamedTuple, Optional, Tuple

import autocrud
from .errors import ConfigurationError

# columns that are added to every persisted entity
RESERVED_FIELDS = ("id", "created_at", "updated_at")
# attributes of the generated models
RESERVED_ATTRIBUTES = ("new", "update_fields", "to_dict", "query", "metadata", "registry")


class FieldKind(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    REFERENCE = "reference"
    ARRAY_OF_STRING = "array_of_string"
    # accept anything, used for kinds we don't know about
    ANY = "any"

    @classmethod
    def parse(cls, value: Any) -> "FieldKind":
        """
        :param value: a FieldKind, a kind name or one of its aliases
        :return: the corresponding FieldKind, FieldKind.ANY if unknown
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, (list, tuple)):
            return cls.ARRAY_OF_STRING
        if isinstance(value, type):
            value = value.__name__
        key = str(value).strip().lower()
        kind = _KIND_ALIASES.get(key)
        if kind is None:
            autocrud.log.warning(f'Unknown field kind "{value}", falling back to "{cls.ANY.value}"')
            return cls.ANY
        return kind


_KIND_ALIASES = {
    "string": FieldKind.STRING,
    "str": FieldKind.STRING,
    "text": FieldKind.STRING,
    "number": FieldKind.NUMBER,
    "int": FieldKind.NUMBER,
    "integer": FieldKind.NUMBER,
    "float": FieldKind.NUMBER,
    "boolean": FieldKind.BOOLEAN,
    "bool": FieldKind.BOOLEAN,
    "date": FieldKind.DATE,
    "datetime": FieldKind.DATE,
    "reference": FieldKind.REFERENCE,
    "ref": FieldKind.REFERENCE,
    "objectid": FieldKind.REFERENCE,
    "array_of_string": FieldKind.ARRAY_OF_STRING,
    "array": FieldKind.ARRAY_OF_STRING,
    "[string]": FieldKind.ARRAY_OF_STRING,
    "list": FieldKind.ARRAY_OF_STRING,
    "any": FieldKind.ANY,
    "mixed": FieldKind.ANY,
}


class SemanticHint(str, Enum):
    """What a string field holds, used to generate realistic synthetic values"""

    EMAIL = "email"
    URL = "url"
    NUMERIC = "numeric"
    FREE_TEXT = "freeText"

    @classmethod
    def parse(cls, value: Any) -> Optional["SemanticHint"]:
        if value is None or isinstance(value, cls):
            return value
        key = str(value).replace("_", "").replace("-", "").lower()
        for hint in cls:
            if hint.value.lower() == key:
                return hint
        raise ConfigurationError(f'Invalid semantic hint "{value}", expected one of {[h.value for h in cls]}')


class Constraint(NamedTuple):
    """A constraint value with the message returned when it is violated"""

    value: Any
    message: Optional[str] = None


def as_constraint(value: Any) -> Optional[Constraint]:
    """
    Accepts a Constraint, a (value, message) pair or a bare value
    """
    if value is None or isinstance(value, Constraint):
        return value
    if isinstance(value, (list, tuple)):
        if len(value) == 2:
            return Constraint(value[0], value[1])
        if len(value) == 1:
            return Constraint(value[0])
        raise ConfigurationError(f"Invalid constraint {value!r}, expected (value, message)")
    return Constraint(value)


def _pattern_text(value: Any) -> str:
    # compiled patterns are accepted as well
    return getattr(value, "pattern", value)


@dataclass(frozen=True)
class FieldSpec:
    """One field of an entity: its kind and its constraints

    :param kind: FieldKind (or a kind name)
    :param required: whether create requests must provide the field
    :param required_message: message when a required field is missing
    :param unique: whether values must be unique over all records of the entity
    :param pattern: (regex, message), strings only
    :param min_length: (length, message), strings only
    :param max_length: (length, message), strings only
    :param minimum: (value, message), numbers only
    :param maximum: (value, message), numbers only
    :param reference_target: name of the referenced entity, references only
    :param default: value stored when the field is omitted
    :param hint: SemanticHint, strings only
    """

    kind: FieldKind = FieldKind.STRING
    required: bool = False
    required_message: Optional[str] = None
    unique: bool = False
    pattern: Optional[Constraint] = None
    min_length: Optional[Constraint] = None
    max_length: Optional[Constraint] = None
    minimum: Optional[Constraint] = None
    maximum: Optional[Constraint] = None
    reference_target: Optional[str] = None
    default: Any = None
    hint: Optional[SemanticHint] = None

    def __post_init__(self):
        # frozen: normalize with object.__setattr__
        object.__setattr__(self, "kind", FieldKind.parse(self.kind))
        object.__setattr__(self, "hint", SemanticHint.parse(self.hint))
        for name in ("pattern", "min_length", "max_length", "minimum", "maximum"):
            object.__setattr__(self, name, as_constraint(getattr(self, name)))
        if self.pattern is not None:
            object.__setattr__(self, "pattern", Constraint(_pattern_text(self.pattern.value), self.pattern.message))

        if self.kind != FieldKind.STRING:
            for name in ("pattern", "min_length", "max_length", "hint"):
                if getattr(self, name) is not None:
                    raise ConfigurationError(f'"{name}" only applies to string fields, not to {self.kind.value}')
        if self.kind != FieldKind.NUMBER:
            for name in ("minimum", "maximum"):
                if getattr(self, name) is not None:
                    raise ConfigurationError(f'"{name}" only applies to number fields, not to {self.kind.value}')
        if self.reference_target is not None and self.kind != FieldKind.REFERENCE:
            raise ConfigurationError(f'"reference_target" only applies to reference fields, not to {self.kind.value}')

        if self.pattern is not None:
            try:
                re.compile(self.pattern.value)
            except re.error as exc:
                raise ConfigurationError(f'Invalid pattern "{self.pattern.value}": {exc}')
        for name in ("min_length", "max_length"):
            constraint = getattr(self, name)
            if constraint is not None and (not isinstance(constraint.value, int) or constraint.value < 0):
                raise ConfigurationError(f'"{name}" must be a non-negative integer, got {constraint.value!r}')
        for name in ("minimum", "maximum"):
            constraint = getattr(self, name)
            if constraint is not None and (isinstance(constraint.value, bool) or not isinstance(constraint.value, (int, float))):
                raise ConfigurationError(f'"{name}" must be a number, got {constraint.value!r}')
        if self.min_length and self.max_length and self.min_length.value > self.max_length.value:
            raise ConfigurationError("min_length exceeds max_length")
        if self.minimum and self.maximum and self.minimum.value > self.maximum.value:
            raise ConfigurationError("minimum exceeds maximum")

    @property
    def regex(self) -> Optional["re.Pattern"]:
        """The compiled pattern, if any"""
        if self.pattern is None:
            return None
        return re.compile(self.pattern.value)

    def check(self, name: str, value: Any, label: str = "") -> Optional[str]:
        """Check the declared constraints on a value that already has the right type

        The constraints are checked in declaration order: pattern, length, range.

        :param name: field name, used in the default messages
        :param value: the value to check
        :param label: entity label, used in the default messages
        :return: the message of the first violated constraint, None if the value is valid
        """
        subject = f"{name} of {label}" if label else name
        if self.kind == FieldKind.STRING and isinstance(value, str):
            if self.pattern and not re.search(self.pattern.value, value):
                return self.pattern.message or f"{subject} has an invalid format"
            if self.min_length and len(value) < self.min_length.value:
                return self.min_length.message or f"{subject} must be at least {self.min_length.value} characters"
            if self.max_length and len(value) > self.max_length.value:
                return self.max_length.message or f"{subject} cannot exceed {self.max_length.value} characters"
        if self.kind == FieldKind.NUMBER and isinstance(value, (int, float)) and not isinstance(value, bool):
            if isinstance(value, float) and not math.isfinite(value):
                return f"{subject} must be a number"
            if self.minimum and value < self.minimum.value:
                return self.minimum.message or f"{subject} must be at least {self.minimum.value}"
            if self.maximum and value > self.maximum.value:
                return self.maximum.message or f"{subject} cannot exceed {self.maximum.value}"
        return None

    def missing_message(self, name: str, label: str = "") -> str:
        if self.required_message:
            return self.required_message
        return f"{name} of {label} is required" if label else f"{name} is required"

    @classmethod
    def from_dict(cls, definition: Mapping) -> "FieldSpec":
        """Load the declarative form of a field, eg.

        {
            "type": "string",
            "required": [True, "Email is required"],
            "unique": True,
            "match": [r"^\\S+@\\S+$", "Invalid email format"],
            "hint": "email",
        }
        """
        if not isinstance(definition, Mapping):
            # shortcut: "name": "string"
            definition = {"type": definition}
        unknown = set(definition) - set(_DECLARATIVE_KEYS)
        if unknown:
            raise ConfigurationError(f"Unknown field options: {', '.join(sorted(unknown))}")
        kwargs = {}
        for key, value in definition.items():
            kwargs[_DECLARATIVE_KEYS[key]] = value
        required = as_constraint(kwargs.pop("required", None))
        if required is not None:
            kwargs["required"] = bool(required.value)
            kwargs["required_message"] = required.message
        kwargs.setdefault("kind", FieldKind.STRING)
        return cls(**kwargs)

    def to_dict(self) -> dict:
        result = {}
        for dc_field in dc_fields(self):
            value = getattr(self, dc_field.name)
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, Constraint):
                value = list(value)
            result[dc_field.name] = value
        return result


_DECLARATIVE_KEYS = {
    "type": "kind",
    "kind": "kind",
    "required": "required",
    "unique": "unique",
    "match": "pattern",
    "pattern": "pattern",
    "minlength": "min_length",
    "min_length": "min_length",
    "maxlength": "max_length",
    "max_length": "max_length",
    "min": "minimum",
    "max": "maximum",
    "ref": "reference_target",
    "reference_target": "reference_target",
    "default": "default",
    "hint": "hint",
}


class EntitySchema(Mapping):
    """
    Ordered, immutable mapping of field name => FieldSpec
    """

    def __init__(self, name: str, fields: Mapping, label: Optional[str] = None) -> None:
        if not name or not isinstance(name, str):
            raise ConfigurationError(f"Invalid entity name {name!r}")
        self.name = name
        self.label = label or sentence_case(name)
        specs = OrderedDict()
        for field_name, spec in fields.items():
            if field_name in RESERVED_FIELDS or field_name in RESERVED_ATTRIBUTES:
                raise ConfigurationError(f'"{field_name}" is a reserved field name ({name})')
            if not field_name.isidentifier() or field_name.startswith("_"):
                raise ConfigurationError(f'Invalid field name "{field_name}" ({name})')
            if not isinstance(spec, FieldSpec):
                spec = FieldSpec.from_dict(spec)
            specs[field_name] = spec
        self._fields = MappingProxyType(specs)

    def __getitem__(self, key: str) -> FieldSpec:
        return self._fields[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __repr__(self) -> str:
        return f"<EntitySchema {self.name}: {', '.join(self._fields)}>"

    def _names(self, predicate) -> Tuple[str, ...]:
        return tuple(name for name, spec in self._fields.items() if predicate(spec))

    @property
    def unique_fields(self) -> Tuple[str, ...]:
        return self._names(lambda spec: spec.unique)

    @property
    def required_fields(self) -> Tuple[str, ...]:
        return self._names(lambda spec: spec.required)

    @property
    def reference_fields(self) -> Tuple[str, ...]:
        return self._names(lambda spec: spec.kind == FieldKind.REFERENCE and spec.reference_target)

    @property
    def numeric_fields(self) -> Tuple[str, ...]:
        return self._names(lambda spec: spec.kind == FieldKind.NUMBER)

    @classmethod
    def from_dict(cls, name: str, mapping: Mapping, label: Optional[str] = None) -> "EntitySchema":
        """
        :param name: entity name, eg. "users"
        :param mapping: field name => declarative field definition
        :return: EntitySchema
        """
        return cls(name, OrderedDict((key, FieldSpec.from_dict(value)) for key, value in mapping.items()), label=label)


def sentence_case(name: str) -> str:
    """
    "users" => "User", "order_items" => "Order item"
    """
    words = re.sub(r"([a-z0-9])([A-Z])", r"\1 \2", name).replace("_", " ").replace("-", " ").split()
    if not words:
        return name
    last = words[-1]
    if len(last) > 1 and last.endswith("s") and not last.endswith("ss"):
        words[-1] = last[:-1]
    text = " ".join(words).lower()
    return text[0].upper() + text[1:]
