# Request validation: pydantic models generated from an EntitySchema
#
# Every entity gets one closed model per operation kind:
#   create: required fields are mandatory
#   update: every field is optional (partial updates)
#   read/delete: identifier shaped parameters only ("id" and "ids")
#   dummy: the "count" of synthetic records
#
from enum import Enum
import math
from datetime import datetime
from typing import Annotated, Any, Dict, List, Optional, Type, Union

from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict, create_model
from pydantic import ValidationError as PydanticValidationError
from pydantic_core import PydanticCustomError

import autocrud
from .config import get_config
from .errors import ValidationError
from .fields import EntitySchema, FieldKind, FieldSpec
from .ids import is_valid_id, split_ids

VALIDATION_FAILED = "Data validation failed."


class StrictModel(BaseModel):
    """
    Unrecognized request fields are rejected to catch client typos early
    """

    model_config = ConfigDict(extra="forbid")


class ValidatorKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    READ = "read"
    DELETE = "delete"
    DUMMY = "dummy"


def _error(message: str) -> PydanticCustomError:
    # the message is passed as context so braces in user messages aren't interpreted
    return PydanticCustomError("constraint", "{message}", {"message": message})


def _check_id(value: str) -> str:
    if not is_valid_id(value):
        raise _error("ID must be a valid identifier")
    # ids are stored in lowercase
    return value.lower()


def _split_ids(value: Any) -> Any:
    if isinstance(value, str):
        return split_ids(value, get_config("ID_DELIMITER") or ",")
    return value


def _nonempty(message: str):
    def check(value):
        if not value:
            raise _error(message)
        return value

    return AfterValidator(check)


def _positive_count(value: Any) -> int:
    if isinstance(value, bool):
        raise _error('The "count" parameter must be a positive integer.')
    try:
        count = int(str(value).strip())
    except ValueError:
        raise _error('The "count" parameter must be a positive integer.')
    if count <= 0:
        raise _error('The "count" parameter must be a positive integer.')
    return count


IdType = Annotated[str, AfterValidator(_check_id)]
IdsType = Annotated[List[IdType], BeforeValidator(_split_ids), _nonempty("At least one ID is required")]
CountType = Annotated[int, BeforeValidator(_positive_count)]


def _number_parser(subject: str):
    def to_number(value):
        if isinstance(value, str):
            for cast in (int, float):
                try:
                    value = cast(value.strip())
                    break
                except ValueError:
                    continue
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise _error(f"{subject} must be a number")
        # nan and inf pass every range check
        if isinstance(value, float) and not math.isfinite(value):
            raise _error(f"{subject} must be a number")
        return value

    return BeforeValidator(to_number)


def _constraint_checker(name: str, spec: FieldSpec, label: str):
    def check(value):
        message = spec.check(name, value, label)
        if message:
            raise _error(message)
        return value

    return AfterValidator(check)


def field_type(name: str, spec: FieldSpec, label: str = "") -> Any:
    """Translate a FieldSpec to an annotated python type

    The base validator is selected by the field kind, the pattern, length and range
    constraints are applied afterwards, in declaration order.
    Arrays of strings only have to be non-empty, element constraints are not applied.
    """
    subject = f"{name} of {label}" if label else name
    checker = _constraint_checker(name, spec, label)
    if spec.kind == FieldKind.STRING:
        return Annotated[str, checker]
    if spec.kind == FieldKind.NUMBER:
        return Annotated[Union[int, float], _number_parser(subject), checker]
    if spec.kind == FieldKind.BOOLEAN:
        return bool
    if spec.kind == FieldKind.DATE:
        return datetime
    if spec.kind == FieldKind.REFERENCE:

        def check_reference(value):
            if not is_valid_id(value):
                raise _error(f"{subject} must be a valid identifier")
            return value.lower()

        return Annotated[str, AfterValidator(check_reference)]
    if spec.kind == FieldKind.ARRAY_OF_STRING:
        return Annotated[List[str], _nonempty(f"{subject} must be a non-empty array")]
    # FieldKind.ANY: accept anything
    return Any


def create_operation_model(schema: EntitySchema, kind: ValidatorKind) -> Type[StrictModel]:
    """
    :param schema: EntitySchema
    :param kind: ValidatorKind
    :return: pydantic model class validating the request input for this kind of operation
    """
    fields: Dict[str, Any] = {}
    if kind in (ValidatorKind.CREATE, ValidatorKind.UPDATE):
        for name, spec in schema.items():
            py_type = field_type(name, spec, schema.label)
            if kind == ValidatorKind.CREATE and spec.required:
                fields[name] = (py_type, ...)
            elif spec.required:
                # may be omitted in an update, but not cleared
                fields[name] = (py_type, None)
            else:
                fields[name] = (Optional[py_type], None)
    elif kind in (ValidatorKind.READ, ValidatorKind.DELETE):
        fields["id"] = (Optional[IdType], None)
        fields["ids"] = (Optional[IdsType], None)
    elif kind == ValidatorKind.DUMMY:
        fields["count"] = (Optional[CountType], None)

    model_name = f"{schema.name}_{kind.value}"
    return create_model(model_name, __base__=StrictModel, **fields)


class OperationValidators:
    """
    The per-operation validators of an entity
    """

    def __init__(self, schema: EntitySchema) -> None:
        self.schema = schema
        self.models = {kind: create_operation_model(schema, kind) for kind in ValidatorKind}

    def __getitem__(self, kind) -> Type[StrictModel]:
        return self.models[ValidatorKind(kind)]

    def validate(self, kind, payload: Optional[dict]) -> dict:
        """Validate the request input
        :param kind: ValidatorKind or its value
        :param payload: the request input
        :return: the validated (coerced) input, only the keys that were provided
        :raises ValidationError: with the list of {field, message} errors
        """
        model = self[kind]
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            raise ValidationError(VALIDATION_FAILED, errors=[{"field": "unknown", "message": "Expected a JSON object"}])
        try:
            instance = model.model_validate(payload)
        except PydanticValidationError as exc:
            raise ValidationError(VALIDATION_FAILED, errors=self.format_errors(exc))
        return instance.model_dump(exclude_unset=True)

    def format_errors(self, exc: PydanticValidationError) -> List[dict]:
        """
        convert the pydantic errors to a list of {"field": ..., "message": ...}, one item per field
        """
        result = []
        seen = set()
        for error in exc.errors():
            loc = [str(part) for part in error.get("loc", ())]
            field = ".".join(loc) if loc else "unknown"
            if field in seen:
                continue
            seen.add(field)
            error_type = error.get("type")
            spec = self.schema.get(loc[0]) if loc else None
            if error_type == "missing" and spec is not None:
                message = spec.missing_message(loc[0], self.schema.label)
            elif error_type == "extra_forbidden":
                message = f'Unrecognized field "{field}"'
            else:
                message = error.get("msg", "Invalid value")
            result.append({"field": field, "message": message})
        autocrud.log.debug(f"{self.schema.name} validation errors: {result}")
        return result
