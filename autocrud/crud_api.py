# flask_restful API subclass
from collections import OrderedDict
from functools import wraps
from http import HTTPStatus
import logging
from typing import Any, Callable, Dict, Mapping, Optional, Type

from flask import request
from flask.app import Flask
from flask_restful import Api, Resource
from flask_restful.representations.json import output_json
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException, NotFound

import autocrud
from .config import get_config, is_debug
from .db import ModelRegistry
from .errors import HIDDEN_LOG, ConfigurationError, CrudError, UnsupportedMediaTypeError, ValidationError
from .fields import EntitySchema
from .formatting import format_response
from .json_encoder import CrudJSONEncoder, CrudJSONProvider
from .operations import HANDLERS, OperationResult
from .request import EntityMeta, RequestContext
from .rules import OperationKind, RouteRule, UploadRule, check_rules, default_rules, rules_from_config
from .validators import OperationValidators, ValidatorKind

DEFAULT_REPRESENTATIONS = [("application/json", output_json)]
ROUTES_ENDPOINT = "routes"


def request_route() -> str:
    """
    :return: "METHOD /path?query" of the current request
    """
    path = request.full_path.rstrip("?") if request.query_string else request.path
    return f"{request.method} {path}"


def http_method_decorator(fun: Callable) -> Callable:
    """Decorator for the generated resource methods
    - commit the database
    - format the result in the response envelope
    - convert all exceptions to an error envelope and roll back

    :param fun: resource method returning an OperationResult
    :return: wrapped fun
    """

    @wraps(fun)
    def method_wrapper(resource, *args, **kwargs):
        """Wrap the method and perform error handling
        :return: (envelope, status code)
        """
        db = resource.db
        route = request_route()
        status_code = HTTPStatus.INTERNAL_SERVER_ERROR.value
        errors = None
        try:
            result: OperationResult = fun(resource, *args, **kwargs)
            db.session.commit()
            return format_response(route, True, result.message, result.data, result.pagination), result.status

        except CrudError as exc:
            status_code = exc.status_code
            message = exc.message
            errors = exc.errors

        except HTTPException as exc:
            status_code = exc.code
            message = exc.description
            autocrud.log.error(message)

        except SQLAlchemyError as exc:
            autocrud.log.exception(exc)
            message = f"Internal Error: {exc}" if is_debug() else f"Internal Error: {HIDDEN_LOG}"

        except Exception as exc:
            autocrud.log.exception(exc)
            message = f"Internal Error: {exc}" if is_debug() else f"Internal Error: {HIDDEN_LOG}"

        db.session.rollback()
        return format_response(route, False, message, errors=errors), status_code

    return method_wrapper


def check_content_type(rule: RouteRule) -> None:
    expected = rule.request_content_type
    if not expected:
        return
    content_type = request.headers.get("Content-Type")
    if not content_type:
        raise UnsupportedMediaTypeError("Content-Type header is missing.")
    if expected.lower() not in content_type.lower():
        raise UnsupportedMediaTypeError(f"Expected Content-Type: {expected}")


def read_body(rule: RouteRule) -> Dict[str, Any]:
    """
    :return: the json object or the form fields of the request
    """
    if not rule.has_body:
        return {}
    if request.is_json:
        body = request.get_json(silent=True)
        if body is None and request.get_data():
            raise ValidationError("Malformed JSON in the request body.")
    elif request.form:
        body = request.form.to_dict()
    else:
        body = None
    if body is not None and not isinstance(body, dict):
        raise ValidationError("The request body must be a JSON object.")
    if rule.validation_enabled and not body:
        raise ValidationError(f"Request body cannot be empty for {request.headers.get('Content-Type')} content type.")
    return body or {}


def check_uploads(rule: RouteRule) -> None:
    """
    Check the uploaded files against the UploadRules of the route, the files are not stored
    """
    errors = []
    for name, upload in (rule.upload_rules or {}).items():
        upload: UploadRule
        files = [file for file in request.files.getlist(name) if file.filename]
        if not files:
            if upload.required:
                errors.append({"field": name, "message": f"{name} is required"})
            continue
        max_files = upload.max_files if upload.multiple else 1
        if len(files) > max_files:
            errors.append({"field": name, "message": f"At most {max_files} file(s) can be uploaded"})
            continue
        for file in files:
            file.stream.seek(0, 2)
            size_kb = file.stream.tell() / 1024
            file.stream.seek(0)
            if upload.allowed_types and file.mimetype not in upload.allowed_types:
                errors.append({"field": name, "message": f'"{file.filename}" has an unsupported type {file.mimetype}'})
            elif upload.min_size is not None and size_kb < upload.min_size:
                errors.append({"field": name, "message": f'"{file.filename}" is smaller than {upload.min_size} KB'})
            elif upload.max_size is not None and size_kb > upload.max_size:
                errors.append({"field": name, "message": f'"{file.filename}" is larger than {upload.max_size} KB'})
    if errors:
        raise ValidationError("Invalid file upload.", errors=errors)


def validate_input(meta: EntityMeta, rule: RouteRule, body: Dict[str, Any], params: Dict[str, Any], query: Mapping):
    """
    Validate the request input against the operation's validator
    :return: validated body, validated params
    """
    validators: OperationValidators = meta.validators
    operation = rule.operation
    id_kind = ValidatorKind.DELETE if rule.method == "DELETE" else ValidatorKind.READ
    if operation == OperationKind.CREATE:
        body = validators.validate(ValidatorKind.CREATE, body)
    elif operation == OperationKind.UPDATE:
        body = validators.validate(ValidatorKind.UPDATE, body)
    elif body:
        # the other operations don't take a body
        body = validators.validate(id_kind, body)
    if params:
        params = validators.validate(id_kind, params)
    if operation in (OperationKind.LIST, OperationKind.DELETE_MANY) and query.get("ids"):
        params = {**params, **validators.validate(id_kind, {"ids": query.get("ids")})}
    return body, params


def handle_request(resource, params: Dict[str, Any]) -> OperationResult:
    """
    Run the middleware chain: content-type => body => uploads => validation => operation handler
    """
    meta: EntityMeta = resource.entity
    rule: RouteRule = resource.rule
    check_content_type(rule)
    body = read_body(rule)
    if rule.upload_rules:
        check_uploads(rule)
    query = request.args.to_dict()
    if rule.validation_enabled:
        body, params = validate_input(meta, rule, body, params, query)
    ctx = RequestContext(meta, rule, resource.db.session, route=request_route(), body=body, query=query, params=params)
    return HANDLERS[rule.operation](ctx)


class CrudAPI(Api):
    """
    Subclass of the flask_restful API class where we add the expose method,
    this method creates the endpoints of an entity from its EntitySchema and RouteRules
    """

    def __init__(self, app: Flask, app_db=None, prefix: Optional[str] = None, **kwargs) -> None:
        """
        :param app: Flask application
        :param app_db: flask_sqlalchemy.SQLAlchemy instance, app.extensions["sqlalchemy"] by default
        :param prefix: url prefix of the endpoints, API_PREFIX by default
        """
        if not isinstance(app, Flask):  # pragma: no cover
            raise TypeError("'app' should be Flask.")
        if app_db is None:
            app_db = app.extensions["sqlalchemy"]
        self.db = app_db
        self.registry = ModelRegistry(app_db)
        self.entities: Dict[str, EntityMeta] = OrderedDict()
        self.entity_rules: Dict[str, tuple] = OrderedDict()

        if prefix is None:
            prefix = get_config("API_PREFIX") or ""
        prefix = prefix.rstrip("/")

        app.url_map.strict_slashes = False
        app.config.setdefault("ERROR_404_HELP", False)
        app.config.setdefault("RESTFUL_JSON", {"cls": CrudJSONEncoder})
        app.json = CrudJSONProvider(app)
        if app.config.get("DEBUG", False):
            autocrud.log.setLevel(logging.DEBUG)

        kwargs.setdefault("catch_all_404s", True)
        super().__init__(app, prefix=prefix, **kwargs)
        self.representations = OrderedDict(DEFAULT_REPRESENTATIONS)
        self._expose_routes_listing()

    def handle_error(self, e):
        """
        Errors raised outside of the generated methods (unknown routes, unsupported methods)
        are returned in the response envelope as well
        """
        if isinstance(e, NotFound):
            status_code = HTTPStatus.NOT_FOUND.value
            message = f"Not Found: The route {request.method} {request.path} does not exist."
        elif isinstance(e, HTTPException):
            status_code = e.code
            message = f"{e.name}: {e.description}"
        else:
            autocrud.log.exception(e)
            status_code = HTTPStatus.INTERNAL_SERVER_ERROR.value
            message = f"Internal Error: {e}" if is_debug() else f"Internal Error: {HIDDEN_LOG}"
        autocrud.log.warning(message)
        return self.make_response(format_response(request_route(), False, message), status_code)

    def _url(self, name: str, path: str) -> str:
        # the collection url ends with a slash, strict_slashes is disabled
        return f"/{name}/" if path == "/" else f"/{name}{path}"

    def expose(self, name: str, schema, rules=None, label: Optional[str] = None):
        """Create the endpoints of an entity

        :param name: entity name, used in the urls and as table name
        :param schema: EntitySchema or the declarative field definitions
        :param rules: RouteRules or route dicts, the default rules are used if empty
        :param label: human readable name used in the messages
        :return: the model of the entity
        """
        if name in self.entities:
            raise ConfigurationError(f'Entity "{name}" is already exposed')
        if name == ROUTES_ENDPOINT:
            raise ConfigurationError(f'"{ROUTES_ENDPOINT}" is reserved for the routes listing')
        if not isinstance(schema, EntitySchema):
            schema = EntitySchema.from_dict(name, schema, label=label)
        rules = rules_from_config(rules)
        if not rules:
            autocrud.log.warning(f'No routes declared for "{name}", using the default routes')
            rules = default_rules()
        check_rules(name, rules)

        model = self.registry.get_or_create(name, schema)
        meta = EntityMeta(name, schema, model, OperationValidators(schema), self.registry)

        for index, rule in enumerate(rules):
            resource = self._create_resource(meta, rule, index)
            urls = [self._url(name, path) for path in rule.paths]
            self.add_resource(resource, *urls, endpoint=f"{name}.{index}.{rule.operation.value}")
            for url in urls:
                autocrud.log.info(f"Route Created: [{rule.method}] {self.prefix}{url}")

        self.entities[name] = meta
        self.entity_rules[name] = rules
        return model

    def expose_config(self, config: Mapping) -> None:
        """
        :param config: entity name => {"schema": {...}, "routes": [...], "label": ...}
        """
        for name, entity_config in config.items():
            self.expose(name, entity_config.get("schema", {}), entity_config.get("routes"), label=entity_config.get("label"))

    def _create_resource(self, meta: EntityMeta, rule: RouteRule, index: int) -> Type[Resource]:
        """
        creates a class of the form

        class users_0_create_API(Resource):
            entity = meta
            rule = rule

            @http_method_decorator
            def post(self, **params):
                ...
        """
        method_name = rule.method.lower()

        def method(resource, **params):
            return handle_request(resource, params)

        method.__name__ = method_name
        properties = {"entity": meta, "rule": rule, "db": self.db, method_name: http_method_decorator(method)}
        api_class_name = f"{meta.name}_{index}_{rule.operation.value}_API"
        return type(api_class_name, (Resource,), properties)

    def routes_listing(self) -> Dict[str, Dict[str, list]]:
        """
        :return: entity name => method => urls
        """
        result = OrderedDict()
        for name, rules in self.entity_rules.items():
            grouped = result[name] = OrderedDict()
            for rule in rules:
                grouped.setdefault(rule.method, []).extend(f"{self.prefix}{self._url(name, path)}" for path in rule.paths)
        return result

    def _expose_routes_listing(self) -> None:
        api = self

        def get(resource):
            return OperationResult(api.routes_listing(), HTTPStatus.OK.value, "Success: Available routes.")

        properties = {"db": self.db, "get": http_method_decorator(get)}
        resource = type("routes_API", (Resource,), properties)
        self.add_resource(resource, f"/{ROUTES_ENDPOINT}", endpoint=ROUTES_ENDPOINT)
