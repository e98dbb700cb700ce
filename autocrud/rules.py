# Route rules: which operation is served for an http method and a list of path aliases
#
# Paths are relative to the entity url, eg. "/<id>" => /api/users/<id>
# The express style "/:id" is accepted as well.
#
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple

from .errors import ConfigurationError
from .pipeline import Stage, parse_pipeline

HTTP_METHODS = ("GET", "POST", "PATCH", "PUT", "DELETE")
# methods that conventionally carry a request body
BODY_METHODS = ("POST", "PUT", "PATCH")
JSON = "application/json"


class OperationKind(str, Enum):
    CREATE = "create"
    LIST = "list"
    GET = "get"
    UPDATE = "update"
    DELETE_ONE = "delete_one"
    DELETE_MANY = "delete_many"
    DELETE_ALL = "delete_all"
    CREATE_DUMMY = "create_dummy"

    @classmethod
    def parse(cls, value: Any) -> "OperationKind":
        if isinstance(value, cls):
            return value
        key = re.sub(r"[^a-z]", "", str(value).lower())
        for kind in cls:
            if kind.value.replace("_", "") == key:
                return kind
        raise ConfigurationError(f'Unknown operation "{value}"')


@dataclass(frozen=True)
class UploadRule:
    """
    Constraints on the files uploaded in a multipart field, sizes are in KB
    """

    multiple: bool = False
    max_files: int = 1
    min_size: Optional[int] = None
    max_size: Optional[int] = None
    allowed_types: Tuple[str, ...] = ()
    required: bool = False

    @classmethod
    def from_dict(cls, definition: Mapping) -> "UploadRule":
        keys = {
            "multiple": "multiple",
            "maxFiles": "max_files",
            "max_files": "max_files",
            "minSize": "min_size",
            "min_size": "min_size",
            "maxSize": "max_size",
            "max_size": "max_size",
            "allowedTypes": "allowed_types",
            "allowed_types": "allowed_types",
            "required": "required",
        }
        unknown = set(definition) - set(keys)
        if unknown:
            raise ConfigurationError(f"Unknown upload options: {', '.join(sorted(unknown))}")
        kwargs = {keys[key]: value for key, value in definition.items()}
        if "allowed_types" in kwargs:
            kwargs["allowed_types"] = tuple(kwargs["allowed_types"])
        if not kwargs.get("multiple", False):
            kwargs["max_files"] = 1
        return cls(**kwargs)


def normalize_path(path: str) -> str:
    """
    "/:id" => "/<id>", a leading slash is added when missing
    """
    if not isinstance(path, str) or not path.strip():
        raise ConfigurationError(f"Invalid path {path!r}")
    path = path.strip()
    if not path.startswith("/"):
        path = "/" + path
    return re.sub(r":([A-Za-z_][A-Za-z0-9_]*)", r"<\1>", path)


@dataclass(frozen=True)
class RouteRule:
    """
    :param method: http method
    :param paths: path aliases, all of them serve the same operation
    :param operation: OperationKind
    :param validation_enabled: whether the request input is validated against the entity schema
    :param request_content_type: expected request content-type, not checked if None
    :param response_pipeline: stages shaping the response data
    :param upload_rules: multipart field name => UploadRule
    """

    method: str
    paths: Tuple[str, ...]
    operation: OperationKind
    validation_enabled: bool = True
    request_content_type: Optional[str] = None
    response_pipeline: Tuple[Stage, ...] = ()
    upload_rules: Optional[Mapping] = field(default=None, hash=False)

    def __post_init__(self):
        method = str(self.method).upper()
        if method not in HTTP_METHODS:
            raise ConfigurationError(f'Unsupported http method "{self.method}"')
        object.__setattr__(self, "method", method)
        paths = (self.paths,) if isinstance(self.paths, str) else tuple(self.paths or ())
        if not paths:
            raise ConfigurationError(f"A {method} route needs at least one path")
        object.__setattr__(self, "paths", tuple(dict.fromkeys(normalize_path(path) for path in paths)))
        object.__setattr__(self, "operation", OperationKind.parse(self.operation))
        object.__setattr__(self, "response_pipeline", parse_pipeline(self.response_pipeline))
        if self.upload_rules:
            rules = {name: rule if isinstance(rule, UploadRule) else UploadRule.from_dict(rule) for name, rule in self.upload_rules.items()}
            object.__setattr__(self, "upload_rules", rules)

    @property
    def has_body(self) -> bool:
        return self.method in BODY_METHODS

    @classmethod
    def from_dict(cls, definition: Mapping) -> "RouteRule":
        """
        {"method": "GET", "paths": ["/", "/all"], "operation": "list", "response_pipeline": [{"project": {...}}]}
        """
        definition = dict(definition)
        if "path" in definition:
            definition["paths"] = [definition.pop("path")]
        allowed = {f.name for f in cls.__dataclass_fields__.values()}
        unknown = set(definition) - allowed
        if unknown:
            raise ConfigurationError(f"Unknown route options: {', '.join(sorted(unknown))}")
        return cls(**definition)


def rules_from_config(definitions: Optional[Iterable]) -> Tuple[RouteRule, ...]:
    """
    :param definitions: list of RouteRules or route dicts
    :return: tuple of RouteRules
    """
    return tuple(rule if isinstance(rule, RouteRule) else RouteRule.from_dict(rule) for rule in definitions or ())


def check_rules(name: str, rules: Iterable[RouteRule]) -> None:
    """
    Raise a ConfigurationError when a method and path are bound to more than one rule
    """
    seen: Dict[Tuple[str, str], OperationKind] = {}
    for rule in rules:
        for path in rule.paths:
            # "/<id>" and "/<pk>" are the same route
            key = (rule.method, re.sub(r"<[^>]+>", "<>", path))
            if key in seen:
                raise ConfigurationError(
                    f'{name}: {rule.method} {path} is bound to "{seen[key].value}" and to "{rule.operation.value}"'
                )
            seen[key] = rule.operation


def default_rules() -> Tuple[RouteRule, ...]:
    """
    The routes of an entity that has no routes declared
    """
    return (
        RouteRule("POST", ("/", "/create", "/add", "/new", "/insert"), OperationKind.CREATE, request_content_type=JSON),
        RouteRule(
            "POST",
            (
                "/create/dummy",
                "/add/dummy",
                "/new/dummy",
                "/insert/dummy",
                "/create-fake",
                "/add-fake",
                "/new-fake",
                "/insert-fake",
                "/create-mock",
                "/add-mock",
                "/create-test",
                "/add-test",
            ),
            OperationKind.CREATE_DUMMY,
            validation_enabled=False,
        ),
        RouteRule("GET", ("/", "/list", "/all", "/find", "/get", "/read", "/fetch", "/retrieve", "/search"), OperationKind.LIST),
        RouteRule(
            "GET",
            ("/<id>", "/find-by-id/<id>", "/get-by-id/<id>", "/read-by-id/<id>", "/fetch-by-id/<id>", "/retrieve-by-id/<id>"),
            OperationKind.GET,
        ),
        RouteRule(
            "PATCH",
            ("/<id>", "/update/<id>", "/edit/<id>", "/modify/<id>", "/change/<id>", "/patch/<id>", "/save/<id>"),
            OperationKind.UPDATE,
            request_content_type=JSON,
        ),
        RouteRule("DELETE", ("/<id>", "/delete/<id>", "/remove/<id>", "/destroy/<id>", "/erase/<id>", "/trash/<id>"), OperationKind.DELETE_ONE),
        RouteRule(
            "DELETE",
            ("/", "/delete-list", "/delete-by-list", "/destroy-list", "/destroy-by-list", "/remove-list", "/remove-by-list"),
            OperationKind.DELETE_MANY,
        ),
        RouteRule("DELETE", ("/delete-all", "/destroy-all", "/remove-all", "/erase-all", "/trash-all"), OperationKind.DELETE_ALL),
    )
