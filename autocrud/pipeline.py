# Response shaping pipelines
#
# A pipeline is a tuple of Stages that is declared once per route and shared by all requests,
# the request criteria are merged into a copy with merge_criteria.
#
# Stage kinds and their spec:
#   filter   {field: value} or {field: {"in": [..], "ne": .., "gt": .., "gte": .., "lt": .., "lte": ..}}
#   project  {field: 1, ...} (inclusion) or {field: 0, ...} (exclusion)
#   sort     {field: 1 | -1, ...}
#   skip     int
#   limit    int
#   populate [reference field, ...] or None for all reference fields
#   count    name of the count attribute
#
import operator
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.types import JSON

import autocrud
from .errors import ConfigurationError, CrudError, InternalError


class StageKind(str, Enum):
    FILTER = "filter"
    PROJECT = "project"
    SORT = "sort"
    SKIP = "skip"
    LIMIT = "limit"
    POPULATE = "populate"
    COUNT = "count"

    @classmethod
    def parse(cls, value: Any) -> "StageKind":
        if isinstance(value, cls):
            return value
        key = str(value).lstrip("$").lower()
        key = _STAGE_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise ConfigurationError(f'Unknown pipeline stage "{value}"')


_STAGE_ALIASES = {"match": "filter", "lookup": "populate", "offset": "skip"}

OPERATORS: Dict[str, Callable[[Any, Any], Any]] = {
    "eq": operator.eq,
    "ne": operator.ne,
    "gt": operator.gt,
    "gte": operator.ge,
    "lt": operator.lt,
    "lte": operator.le,
}
SET_OPERATORS = ("in", "nin")


def _operator_name(key: str) -> str:
    return str(key).lstrip("$")


def _check_filter(spec: Any) -> Mapping:
    if not isinstance(spec, Mapping):
        raise ConfigurationError(f"A filter stage takes a mapping, not {spec!r}")
    for field, condition in spec.items():
        if not isinstance(field, str):
            raise ConfigurationError(f"Invalid filter field {field!r}")
        if isinstance(condition, Mapping):
            for key, operand in condition.items():
                name = _operator_name(key)
                if name in SET_OPERATORS:
                    if isinstance(operand, (str, bytes)) or not isinstance(operand, Iterable):
                        raise ConfigurationError(f'"{key}" takes a list ({field})')
                elif name not in OPERATORS:
                    raise ConfigurationError(f'Unknown filter operator "{key}" ({field})')
    return spec


@dataclass(frozen=True)
class Stage:
    """
    One step of a response pipeline, the spec of mapping stages is read-only
    """

    kind: StageKind
    spec: Any = None

    def __post_init__(self):
        kind = StageKind.parse(self.kind)
        object.__setattr__(self, "kind", kind)
        spec = self.spec
        if kind == StageKind.FILTER:
            spec = MappingProxyType(dict(_check_filter(spec or {})))
        elif kind == StageKind.PROJECT:
            if not isinstance(spec, Mapping) or not spec:
                raise ConfigurationError(f"A project stage takes a non-empty mapping, not {spec!r}")
            spec = MappingProxyType({field: bool(include) for field, include in spec.items()})
            included = {include for field, include in spec.items() if field != "id"}
            if len(included) > 1:
                raise ConfigurationError("A project stage can't mix inclusion and exclusion")
        elif kind == StageKind.SORT:
            if not isinstance(spec, Mapping) or not spec:
                raise ConfigurationError(f"A sort stage takes a non-empty mapping, not {spec!r}")
            spec = MappingProxyType({field: _direction(direction) for field, direction in spec.items()})
        elif kind in (StageKind.SKIP, StageKind.LIMIT):
            if isinstance(spec, bool) or not isinstance(spec, int) or spec < 0:
                raise ConfigurationError(f"A {kind.value} stage takes a non-negative integer, not {spec!r}")
        elif kind == StageKind.POPULATE:
            if isinstance(spec, str):
                spec = (spec,)
            elif spec is not None:
                spec = tuple(spec)
        elif kind == StageKind.COUNT:
            spec = spec or "count"
            if not isinstance(spec, str):
                raise ConfigurationError(f"A count stage takes the name of the count attribute, not {spec!r}")
        object.__setattr__(self, "spec", spec)

    @classmethod
    def filter(cls, spec: Mapping) -> "Stage":
        return cls(StageKind.FILTER, spec)

    @classmethod
    def project(cls, spec: Mapping) -> "Stage":
        return cls(StageKind.PROJECT, spec)

    @classmethod
    def sort(cls, spec: Mapping) -> "Stage":
        return cls(StageKind.SORT, spec)

    @classmethod
    def skip(cls, count: int) -> "Stage":
        return cls(StageKind.SKIP, count)

    @classmethod
    def limit(cls, count: int) -> "Stage":
        return cls(StageKind.LIMIT, count)

    @classmethod
    def populate(cls, fields: Optional[Sequence[str]] = None) -> "Stage":
        return cls(StageKind.POPULATE, fields)

    @classmethod
    def count(cls, name: str = "count") -> "Stage":
        return cls(StageKind.COUNT, name)

    @classmethod
    def from_dict(cls, declaration: Any) -> "Stage":
        """
        {"filter": {...}} or {"$match": {...}}
        """
        if isinstance(declaration, Stage):
            return declaration
        if not isinstance(declaration, Mapping) or len(declaration) != 1:
            raise ConfigurationError(f"A pipeline stage is a mapping with a single key, not {declaration!r}")
        ((kind, spec),) = declaration.items()
        return cls(kind, spec)

    def to_dict(self) -> dict:
        spec = self.spec
        if isinstance(spec, Mapping):
            spec = dict(spec)
        elif isinstance(spec, tuple):
            spec = list(spec)
        return {self.kind.value: spec}


def _direction(value: Any) -> int:
    if value in (1, "1", "asc", "ascending"):
        return 1
    if value in (-1, "-1", "desc", "descending"):
        return -1
    raise ConfigurationError(f"Invalid sort direction {value!r}")


def parse_pipeline(declarations: Optional[Iterable]) -> Tuple[Stage, ...]:
    """
    :param declarations: list of stage declarations (or Stages)
    :return: tuple of Stages
    """
    if not declarations:
        return ()
    return tuple(Stage.from_dict(declaration) for declaration in declarations)


def criteria_filter(criteria: Any) -> Dict[str, Any]:
    """
    :param criteria: an id, a list of ids or a filter mapping
    :return: filter spec
    """
    if isinstance(criteria, str):
        return {"id": criteria}
    if isinstance(criteria, Mapping):
        return dict(criteria)
    if isinstance(criteria, (list, tuple, set, frozenset)):
        return {"id": {"in": list(criteria)}}
    raise TypeError(f"Invalid criteria {criteria!r}")


def merge_criteria(stages: Sequence[Stage], criteria: Any) -> Tuple[Stage, ...]:
    """Merge the criteria into the first filter stage of a pipeline

    The criteria keys replace the keys of the existing filter, later filter stages are left as they are.
    When there is no filter stage, a filter stage with the criteria is prepended.
    The stages that are passed are not modified, a new tuple is returned.

    :param stages: the declared pipeline
    :param criteria: an id, a list of ids or a filter mapping
    :return: new pipeline
    """
    merged = list(stages)
    criteria = criteria_filter(criteria)
    for index, stage in enumerate(merged):
        if stage.kind == StageKind.FILTER:
            merged[index] = Stage.filter({**stage.spec, **criteria})
            break
    else:
        merged.insert(0, Stage.filter(criteria))
    return tuple(merged)


def _match(value: Any, condition: Any) -> bool:
    if isinstance(condition, Mapping):
        for key, operand in condition.items():
            name = _operator_name(key)
            if name == "in":
                result = value in list(operand)
            elif name == "nin":
                result = value not in list(operand)
            else:
                try:
                    result = OPERATORS[name](value, operand)
                except TypeError:
                    # eg. None < 5
                    result = False
            if not result:
                return False
        return True
    if isinstance(value, list) and not isinstance(condition, list):
        # array fields match when they contain the value
        return condition in value
    return value == condition


def _sort_key(field: str):
    def key(record):
        value = record.get(field)
        return (value is not None, value)

    return key


class PipelineExecutor:
    """Execute a pipeline for a model

    The leading filter, sort, skip and limit stages are translated to the SQL query,
    the remaining stages are applied to the fetched records in order.
    """

    def __init__(self, model, session, populate: Optional[Callable[[List[dict], Optional[Sequence[str]]], List[dict]]] = None) -> None:
        """
        :param model: PersistedEntity model
        :param session: sqlalchemy session
        :param populate: callback resolving the reference fields of a list of records
        """
        self.model = model
        self.session = session
        self.populate = populate

    def _column(self, field: str):
        column = self.model.__table__.columns.get(field)
        if column is None or isinstance(column.type, JSON):
            return None
        return getattr(self.model, field)

    def _filter_clause(self, spec: Mapping):
        clauses = []
        for field, condition in spec.items():
            column = self._column(field)
            if column is None:
                return None
            if isinstance(condition, Mapping):
                for key, operand in condition.items():
                    name = _operator_name(key)
                    if name == "in":
                        clauses.append(column.in_(list(operand)))
                    elif name == "nin":
                        clauses.append(column.not_in(list(operand)))
                    else:
                        clauses.append(OPERATORS[name](column, operand))
            elif condition is None:
                clauses.append(column.is_(None))
            else:
                clauses.append(column == condition)
        return and_(*clauses) if clauses else None

    def run(self, stages: Sequence[Stage]) -> List[dict]:
        """
        :param stages: pipeline
        :return: list of record dicts (or [{"count": n}] for a count pipeline)
        """
        try:
            return self._run(tuple(stages))
        except CrudError:
            raise
        except (SQLAlchemyError, TypeError, KeyError, ValueError) as exc:
            autocrud.log.exception(exc)
            raise InternalError(f"Pipeline execution failed: {exc}")

    def _run(self, stages: Tuple[Stage, ...]) -> List[dict]:
        query = self.session.query(self.model)
        order_by = []
        offset, limit = 0, None
        index = 0
        # push the leading stages down to the query
        for index, stage in enumerate(stages):
            windowed = offset or limit is not None
            if stage.kind == StageKind.FILTER and not windowed:
                clause = self._filter_clause(stage.spec)
                if clause is None and stage.spec:
                    break
                if clause is not None:
                    query = query.filter(clause)
            elif stage.kind == StageKind.SORT and not windowed:
                columns = [(self._column(field), direction) for field, direction in stage.spec.items()]
                if any(column is None for column, _ in columns):
                    break
                # a later sort takes precedence
                order_by = [column.desc() if direction < 0 else column.asc() for column, direction in columns] + order_by
            elif stage.kind == StageKind.SKIP:
                offset += stage.spec
                if limit is not None:
                    limit = max(limit - stage.spec, 0)
            elif stage.kind == StageKind.LIMIT:
                limit = stage.spec if limit is None else min(limit, stage.spec)
            else:
                break
        else:
            index = len(stages)

        rest = stages[index:]
        if order_by:
            query = query.order_by(*order_by)

        if rest and rest[-1].kind == StageKind.COUNT and not offset and limit is None:
            if all(stage.kind in (StageKind.SORT, StageKind.PROJECT, StageKind.POPULATE) for stage in rest[:-1]):
                return [{rest[-1].spec: query.order_by(None).count()}]

        if offset:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)
        records = [row.to_dict() for row in query]
        return self._apply(records, rest)

    def _apply(self, records: List[dict], stages: Sequence[Stage]) -> List[dict]:
        for stage in stages:
            if stage.kind == StageKind.FILTER:
                records = [record for record in records if all(_match(record.get(field), condition) for field, condition in stage.spec.items())]
            elif stage.kind == StageKind.SORT:
                for field, direction in reversed(list(stage.spec.items())):
                    records = sorted(records, key=_sort_key(field), reverse=direction < 0)
            elif stage.kind == StageKind.SKIP:
                records = records[stage.spec :]
            elif stage.kind == StageKind.LIMIT:
                records = records[: stage.spec]
            elif stage.kind == StageKind.PROJECT:
                records = [project(record, stage.spec) for record in records]
            elif stage.kind == StageKind.POPULATE:
                if self.populate is not None:
                    records = self.populate(records, stage.spec)
            elif stage.kind == StageKind.COUNT:
                records = [{stage.spec: len(records)}]
        return records


def project(record: dict, spec: Mapping) -> dict:
    """
    Apply an inclusion or exclusion projection to a record, "id" is kept unless it's excluded explicitly
    """
    inclusion = any(include for field, include in spec.items() if field != "id")
    if inclusion:
        result = {field: record[field] for field in record if spec.get(field)}
        if spec.get("id", True) and "id" in record:
            result = {"id": record["id"], **result}
        return result
    return {field: value for field, value in record.items() if spec.get(field, True)}
