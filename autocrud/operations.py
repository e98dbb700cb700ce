# Operation handlers
#
# Every handler takes a RequestContext and returns an OperationResult,
# errors are raised as CrudErrors and formatted by http_method_decorator.
# The handlers don't commit, the session is committed by http_method_decorator
# (except for create_dummy, which commits every record separately).
#
import datetime
import json
import math
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError

import autocrud
from .config import get_config, get_int_config
from .db import to_naive_utc
from .errors import ConflictError, InternalError, NotFoundError, StorageValidationError, ValidationError
from .fields import FieldKind, RESERVED_FIELDS
from .formatting import pagination, parse_pagination, parse_sort, sort_description
from .generator import SyntheticRecordGenerator
from .ids import gen_id
from .pipeline import Stage, StageKind, merge_criteria
from .request import RequestContext
from .rules import OperationKind
from .validators import ValidatorKind


@dataclass
class OperationResult:
    data: Any = None
    status: int = HTTPStatus.OK.value
    message: str = ""
    pagination: Optional[Dict[str, int]] = None


def plural(label: str, count: int) -> str:
    return label if count == 1 else f"{label}s"


def find_conflict(ctx: RequestContext, data: Dict[str, Any], exclude_id: Optional[str] = None) -> Optional[Tuple[str, Any]]:
    """Look up an existing record holding one of the unique values in data

    This check isn't transactional, the unique constraints of the table have the final word.

    :param ctx: RequestContext
    :param data: field => value
    :param exclude_id: id of the record that is being updated
    :return: (field, value) of the first conflict or None
    """
    model = ctx.model
    for field in ctx.schema.unique_fields:
        value = data.get(field)
        if value is None or value == "":
            continue
        query = ctx.query_model().filter(getattr(model, field) == value)
        if exclude_id is not None:
            query = query.filter(model.id != exclude_id)
        if query.first() is not None:
            return field, value
    return None


def check_unique(ctx: RequestContext, data: Dict[str, Any], exclude_id: Optional[str] = None) -> None:
    conflict = find_conflict(ctx, data, exclude_id)
    if conflict:
        raise ConflictError(ctx.label, *conflict)


def flush(ctx: RequestContext, data: Dict[str, Any], exclude_id: Optional[str] = None) -> None:
    """
    Flush the pending changes, a rejected unique value is reported as a conflict
    """
    try:
        ctx.session.flush()
    except IntegrityError as exc:
        ctx.session.rollback()
        # another request may have taken the value after our pre-check
        conflict = find_conflict(ctx, data, exclude_id)
        if conflict:
            raise ConflictError(ctx.label, *conflict)
        raise InternalError(f"Storage failure: {exc.orig}")


def create(ctx: RequestContext) -> OperationResult:
    data = ctx.body
    check_unique(ctx, data)
    instance = ctx.model.new(data)
    ctx.session.add(instance)
    flush(ctx, data)
    record = ctx.shape_one(instance.id)
    if record is None:
        raise InternalError(f"Failed to retrieve {ctx.label} after creation.")
    return OperationResult(record, HTTPStatus.CREATED.value, f'Success: New {ctx.label} created with ID "{instance.id}".')


def _coerce_filter(ctx: RequestContext, key: str, value: str) -> Any:
    """
    convert a query argument to the type of the field
    """
    spec = ctx.schema.get(key)
    if spec is None:
        if key in ("created_at", "updated_at"):
            return _parse_date(key, value)
        if key not in RESERVED_FIELDS:
            autocrud.log.warning(f'"{key}" is not a field of {ctx.schema.name}, the filter matches nothing')
        return value
    if spec.kind == FieldKind.NUMBER:
        try:
            number = float(value)
        except ValueError:
            number = math.nan
        if not math.isfinite(number):
            raise ValidationError(f'Invalid value "{value}" for numeric filter "{key}".', errors=[{"field": key, "message": "Expected a number"}])
        return int(number) if number.is_integer() else number
    if spec.kind == FieldKind.BOOLEAN:
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes"):
            return True
        if lowered in ("false", "0", "no"):
            return False
        raise ValidationError(f'Invalid value "{value}" for boolean filter "{key}".', errors=[{"field": key, "message": "Expected true or false"}])
    if spec.kind == FieldKind.DATE:
        return _parse_date(key, value)
    return value


def _parse_date(key: str, value: str) -> datetime.datetime:
    try:
        return to_naive_utc(datetime.datetime.fromisoformat(value))
    except ValueError:
        raise ValidationError(f'Invalid value "{value}" for date filter "{key}".', errors=[{"field": key, "message": "Expected an ISO 8601 date"}])


def _request_ids(ctx: RequestContext, kind: ValidatorKind) -> List[str]:
    """
    the validated "ids" of the request, from the path or from the query
    """
    ids = ctx.params.get("ids")
    if ids is None and ctx.query.get("ids"):
        ids = ctx.entity.validators.validate(kind, {"ids": ctx.query["ids"]})["ids"]
    return list(ids or [])


def with_sort(stages: Tuple[Stage, ...], sort: Dict[str, int]) -> Tuple[Stage, ...]:
    """
    Insert the request sort before the first project stage, the projection may drop the sort fields
    """
    for index, stage in enumerate(stages):
        if stage.kind == StageKind.PROJECT:
            return stages[:index] + (Stage.sort(sort),) + stages[index:]
    return stages + (Stage.sort(sort),)


def list_records(ctx: RequestContext) -> OperationResult:
    query = dict(ctx.query)
    page, limit = parse_pagination(query.pop("page", None), query.pop("limit", None))
    sort_arg = query.pop("sort", None)
    query.pop("ids", None)

    prefix = get_config("RESERVED_QUERY_PREFIX") or "?"
    invalid_keys = [key for key in query if key.startswith(prefix)]
    if invalid_keys:
        raise ValidationError(f"Invalid query parameter(s) detected: {', '.join(invalid_keys)}.")

    filters = {}
    for key, value in query.items():
        if value == "":
            continue
        filters[key] = _coerce_filter(ctx, key, value)
    ids = _request_ids(ctx, ValidatorKind.READ)
    if ids:
        filters["id"] = {"in": ids}

    sortable = ("id", "created_at", "updated_at") + tuple(ctx.schema.keys())
    sort = parse_sort(sort_arg, sortable)
    window = (Stage.skip((page - 1) * limit), Stage.limit(limit))
    pipeline = ctx.rule.response_pipeline
    if pipeline:
        stages = with_sort(merge_criteria(pipeline, filters), sort)
        records = ctx.run_pipeline(stages + window)
    else:
        stages = (Stage.filter(filters), Stage.sort(sort))
        records = ctx.run_pipeline(stages + window + (Stage.populate(),))
    # the page and the count are two separate reads
    count_result = ctx.run_pipeline(stages + (Stage.count(),))
    total = count_result[0]["count"] if count_result else 0

    if not records:
        echo = json.dumps(filters, default=str) if filters else "none"
        raise NotFoundError(f"No {plural(ctx.label, 2)} exist with the given filters: {echo}.")

    condition = json.dumps(filters, default=str) if filters else "No filters applied"
    message = (
        f"Success: {total} {plural(ctx.label, total)} fetched with filters: {condition}, "
        f"sorted by '{sort_description(sort)}', page {page}, and limit {limit}."
    )
    return OperationResult(records, HTTPStatus.OK.value, message, pagination(total, page, limit))


def get(ctx: RequestContext) -> OperationResult:
    record_id = ctx.params.get("id")
    record = ctx.shape_one(record_id)
    if record is None:
        raise NotFoundError(f'{ctx.label} with ID "{record_id}" does not exist.')
    return OperationResult(record, HTTPStatus.OK.value, f'Success: {ctx.label} with ID "{record_id}" fetched.')


def update(ctx: RequestContext) -> OperationResult:
    record_id = ctx.params.get("id")
    instance = ctx.session.get(ctx.model, record_id)
    if instance is None:
        raise NotFoundError(f'{ctx.label} with ID "{record_id}" does not exist.')
    data = ctx.body
    check_unique(ctx, data, exclude_id=record_id)
    instance.update_fields(data)
    flush(ctx, data, exclude_id=record_id)
    # respond with the current state, shaped like a get
    record = ctx.shape_one(record_id)
    if record is None:
        raise InternalError(f'Failed to retrieve {ctx.label} with ID "{record_id}" after the update.')
    return OperationResult(record, HTTPStatus.OK.value, f'Success: {ctx.label} updated with ID "{record_id}".')


def delete_one(ctx: RequestContext) -> OperationResult:
    record_id = ctx.params.get("id")
    instance = ctx.session.get(ctx.model, record_id) if record_id else None
    if instance is None:
        raise NotFoundError(f'{ctx.label} with ID "{record_id}" does not exist.')
    ctx.session.delete(instance)
    return OperationResult(None, HTTPStatus.OK.value, f'Success: {ctx.label} with ID "{record_id}" deleted successfully.')


def delete_many(ctx: RequestContext) -> OperationResult:
    """
    All or nothing: when one of the ids doesn't exist, nothing is deleted
    """
    ids = _request_ids(ctx, ValidatorKind.DELETE)
    if not ids:
        raise ValidationError("At least one ID is required.", errors=[{"field": "ids", "message": "At least one ID is required"}])
    model = ctx.model
    existing = {row.id for row in ctx.session.query(model.id).filter(model.id.in_(ids))}
    missing = [record_id for record_id in ids if record_id not in existing]
    if missing:
        raise NotFoundError(f"Some {ctx.label} IDs do not exist: {', '.join(missing)}. Deletion aborted.", missing=missing)
    deleted = ctx.query_model().filter(model.id.in_(ids)).delete(synchronize_session=False)
    if deleted != len(ids):
        # the session is rolled back, so nothing is deleted
        raise InternalError(f"Expected to delete {len(ids)} {plural(ctx.label, len(ids))}, deleted {deleted}.")
    return OperationResult(None, HTTPStatus.OK.value, f"Success: {ctx.label} with IDs: {', '.join(ids)} deleted successfully.")


def delete_all(ctx: RequestContext) -> OperationResult:
    existing = ctx.query_model().count()
    if not existing:
        raise NotFoundError(f"No {ctx.label} found.")
    deleted = ctx.query_model().delete(synchronize_session=False)
    if deleted != existing:
        # records were added or removed concurrently
        raise InternalError(f"Failed to delete all {plural(ctx.label, 2)}: {deleted} of {existing} deleted.")
    return OperationResult(None, HTTPStatus.OK.value, f"Success: {existing} {plural(ctx.label, existing)} deleted successfully.")


def create_dummy(ctx: RequestContext) -> OperationResult:
    """
    Insert synthetic records, records rejected by the storage constraints are skipped
    """
    count = ctx.entity.validators.validate(ValidatorKind.DUMMY, {"count": ctx.query.get("count", 1)})["count"]
    max_count = get_int_config("DUMMY_MAX_COUNT")
    if count > max_count:
        raise ValidationError(f'The "count" parameter cannot exceed {max_count}.', errors=[{"field": "count", "message": f"At most {max_count}"}])

    generator = SyntheticRecordGenerator(ctx.schema)
    inserted = []
    for record in generator.records(count):
        record["id"] = gen_id()
        try:
            ctx.session.add(ctx.model.new(record))
            ctx.session.commit()
        except (StorageValidationError, IntegrityError) as exc:
            ctx.session.rollback()
            autocrud.log.warning(f"Skipped a dummy {ctx.label}: {exc}")
            continue
        inserted.append(record["id"])

    if not inserted:
        raise InternalError(f"None of the {count} dummy {plural(ctx.label, count)} could be inserted.")

    records = ctx.shape(inserted)
    message = f"Success: {len(inserted)} {plural(ctx.label, len(inserted))} created with dummy data."
    if len(inserted) < count:
        message += f" {count - len(inserted)} rejected by the storage constraints."
    return OperationResult(records, HTTPStatus.CREATED.value, message)


HANDLERS = {
    OperationKind.CREATE: create,
    OperationKind.LIST: list_records,
    OperationKind.GET: get,
    OperationKind.UPDATE: update,
    OperationKind.DELETE_ONE: delete_one,
    OperationKind.DELETE_MANY: delete_many,
    OperationKind.DELETE_ALL: delete_all,
    OperationKind.CREATE_DUMMY: create_dummy,
}
