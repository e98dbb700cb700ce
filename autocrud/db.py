# -*- coding: utf-8 -*-
"""
    db.py: the PersistedEntity SQLAlchemy Mixin and the ModelRegistry that declares the models
"""
#
# The storage constraints mirror the FieldSpec constraints: they are the authority of record,
# requests that passed the validators can still be rejected here.
#
import datetime
import math
import re
from typing import Any, Dict, Iterable, List, Optional, Type

from sqlalchemy import JSON, Boolean, CheckConstraint, Column, DateTime, Float, String, Text, func
from sqlalchemy.orm import validates

import autocrud
from .errors import ConfigurationError, StorageValidationError
from .fields import EntitySchema, FieldKind, FieldSpec
from .ids import ID_LENGTH, gen_id, is_valid_id


def utcnow() -> datetime.datetime:
    # naive utc timestamps, sqlite doesn't store the timezone
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime.datetime) -> datetime.datetime:
    """
    Aware datetimes are converted to utc before the offset is dropped, naive ones are taken as utc
    """
    if value.tzinfo is None:
        return value
    return value.astimezone(datetime.timezone.utc).replace(tzinfo=None)


class PersistedEntity:
    """
    Mixin for the generated models: identifier and automatic timestamps
    """

    # set on the generated subclasses
    __entity_schema__ = None

    id = Column(String(ID_LENGTH), primary_key=True, default=gen_id)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    @classmethod
    def new(cls, data: Dict[str, Any]) -> "PersistedEntity":
        """Create an instance, the declared defaults are applied for omitted fields
        :param data: field name => value
        :return: new instance (not added to the session)
        """
        schema = cls.__entity_schema__
        values = {}
        for name, spec in schema.items():
            if name in data:
                values[name] = data[name]
            elif spec.default is not None:
                values[name] = spec.default() if callable(spec.default) else spec.default
            elif spec.required:
                raise StorageValidationError(name, spec.missing_message(name, schema.label))
        if "id" in data:
            values["id"] = data["id"]
        return cls(**values)

    def update_fields(self, data: Dict[str, Any]) -> None:
        """
        apply a partial update
        """
        for name, value in data.items():
            if name in self.__entity_schema__:
                setattr(self, name, value)

    def to_dict(self) -> Dict[str, Any]:
        """
        :return: the record as a dict: id, the entity fields and the timestamps
        """
        result = {"id": self.id}
        for name in self.__entity_schema__:
            value = getattr(self, name)
            if isinstance(value, float) and value.is_integer():
                value = int(value)
            result[name] = value
        result["created_at"] = self.created_at
        result["updated_at"] = self.updated_at
        return result

    def __repr__(self):
        return f"<{self.__class__.__name__} {self.id}>"


def _coerce(name: str, spec: FieldSpec, value: Any, label: str) -> Any:
    """
    Check (and for dates, convert) a value before it's assigned to a model attribute
    """
    subject = f"{name} of {label}"
    if value is None:
        if spec.required:
            raise StorageValidationError(name, spec.missing_message(name, label))
        return None
    if spec.kind == FieldKind.STRING and not isinstance(value, str):
        raise StorageValidationError(name, f"{subject} must be a string")
    if spec.kind == FieldKind.NUMBER:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise StorageValidationError(name, f"{subject} must be a number")
        if isinstance(value, float) and not math.isfinite(value):
            raise StorageValidationError(name, f"{subject} must be a number")
    if spec.kind == FieldKind.BOOLEAN and not isinstance(value, bool):
        raise StorageValidationError(name, f"{subject} must be a boolean")
    if spec.kind == FieldKind.DATE and not isinstance(value, datetime.datetime):
        if isinstance(value, datetime.date):
            value = datetime.datetime.combine(value, datetime.time())
        else:
            try:
                value = datetime.datetime.fromisoformat(str(value))
            except ValueError:
                raise StorageValidationError(name, f"{subject} must be a date")
    if spec.kind == FieldKind.DATE:
        value = to_naive_utc(value)
    if spec.kind == FieldKind.REFERENCE and not is_valid_id(value):
        raise StorageValidationError(name, f"{subject} must be a valid identifier")
    if spec.kind == FieldKind.ARRAY_OF_STRING:
        if not isinstance(value, (list, tuple)) or not all(isinstance(item, str) for item in value):
            raise StorageValidationError(name, f"{subject} must be an array of strings")
        value = list(value)
    message = spec.check(name, value, label)
    if message:
        raise StorageValidationError(name, message)
    return value


def _column_type(spec: FieldSpec):
    if spec.kind == FieldKind.STRING:
        return String(spec.max_length.value) if spec.max_length else Text
    if spec.kind == FieldKind.NUMBER:
        return Float
    if spec.kind == FieldKind.BOOLEAN:
        return Boolean
    if spec.kind == FieldKind.DATE:
        return DateTime
    if spec.kind == FieldKind.REFERENCE:
        return String(ID_LENGTH)
    # arrays and unknown kinds
    return JSON


def _class_name(name: str) -> str:
    return "".join(part[:1].upper() + part[1:] for part in re.split(r"[^0-9A-Za-z]+", name) if part)


class ModelRegistry:
    """
    Declares the SQLAlchemy models of the entities, at most one model per entity name
    """

    def __init__(self, db) -> None:
        """
        :param db: flask_sqlalchemy.SQLAlchemy instance
        """
        self.db = db
        self._models: Dict[str, Type[PersistedEntity]] = {}

    def __contains__(self, name: str) -> bool:
        return name in self._models

    def __iter__(self):
        return iter(self._models.items())

    def get(self, name: str) -> Type[PersistedEntity]:
        try:
            return self._models[name]
        except KeyError:
            raise ConfigurationError(f'Entity "{name}" has not been registered')

    def get_or_create(self, name: str, schema: EntitySchema) -> Type[PersistedEntity]:
        """Return the model registered for name, declare it first if it doesn't exist yet

        Registration is idempotent: the same entity may be referenced from multiple configuration sources.
        When a model with the same table is already mapped on the db (eg. by another registry), it is reused.

        :param name: entity name, used as the table name
        :param schema: EntitySchema
        :return: model class
        """
        model = self._models.get(name)
        if model is None:
            model = self._find_mapped(name)
        if model is not None:
            if model.__entity_schema__ is not schema and dict(model.__entity_schema__) != dict(schema):
                autocrud.log.warning(f'Entity "{name}" was already registered with a different schema, keeping the first one')
            self._models[name] = model
            return model

        model = self._declare(name, schema)
        self._models[name] = model
        autocrud.log.info(f'Registered entity "{name}" as {model.__name__}')
        return model

    def _find_mapped(self, name: str) -> Optional[Type[PersistedEntity]]:
        for mapper in self.db.Model.registry.mappers:
            cls = mapper.class_
            if getattr(cls, "__tablename__", None) == name and issubclass(cls, PersistedEntity):
                return cls
        return None

    def _declare(self, name: str, schema: EntitySchema) -> Type[PersistedEntity]:
        """
        Create the model class with type(), the columns and constraints are derived from the FieldSpecs
        """
        properties: Dict[str, Any] = {"__tablename__": name, "__entity_schema__": schema}
        constraints = []
        for field_name, spec in schema.items():
            column = Column(
                field_name,
                _column_type(spec),
                nullable=not spec.required,
                unique=spec.unique,
                index=spec.kind == FieldKind.REFERENCE,
            )
            if spec.minimum is not None:
                constraints.append(CheckConstraint(column >= spec.minimum.value, name=f"ck_{name}_{field_name}_min"))
            if spec.maximum is not None:
                constraints.append(CheckConstraint(column <= spec.maximum.value, name=f"ck_{name}_{field_name}_max"))
            if spec.min_length is not None:
                constraints.append(CheckConstraint(func.length(column) >= spec.min_length.value, name=f"ck_{name}_{field_name}_minlen"))
            if spec.max_length is not None:
                constraints.append(CheckConstraint(func.length(column) <= spec.max_length.value, name=f"ck_{name}_{field_name}_maxlen"))
            properties[field_name] = column

        if constraints:
            properties["__table_args__"] = tuple(constraints)

        if len(schema):

            @validates(*schema.keys())
            def validate_field(self, key, value):
                return _coerce(key, schema[key], value, schema.label)

            properties["_validate_field"] = validate_field

        return type(_class_name(name), (PersistedEntity, self.db.Model), properties)

    def populate(self, model: Type[PersistedEntity], records: List[Dict[str, Any]], fields: Optional[Iterable[str]] = None) -> List[Dict[str, Any]]:
        """Resolve the reference fields of the records to the referenced records

        References to unregistered entities or to missing records are left as they are.

        :param model: model of the records
        :param records: list of dicts
        :param fields: reference fields to populate, all of them if None
        :return: the same list, with the references replaced
        """
        schema = model.__entity_schema__
        for field_name in schema.reference_fields:
            if fields is not None and field_name not in fields:
                continue
            target_name = schema[field_name].reference_target
            target = self._models.get(target_name)
            if target is None:
                autocrud.log.debug(f'Not populating "{field_name}": entity "{target_name}" is not registered')
                continue
            ids = {record.get(field_name) for record in records if isinstance(record.get(field_name), str)}
            if not ids:
                continue
            found = {row.id: row.to_dict() for row in self._query(target).filter(target.id.in_(ids))}
            for record in records:
                value = record.get(field_name)
                if isinstance(value, str) and value in found:
                    record[field_name] = found[value]
        return records

    def _query(self, model: Type[PersistedEntity]):
        return self.db.session.query(model)

    def models(self) -> Iterable[Type[PersistedEntity]]:
        return self._models.values()
