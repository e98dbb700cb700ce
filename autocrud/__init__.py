# flake8: noqa: F401
#
# autocrud: declarative entities to CRUD endpoints
#
from .crud_init import AUTOCRUD, log
from .errors import (
    ConfigurationError,
    CrudError,
    ValidationError,
    StorageValidationError,
    ConflictError,
    NotFoundError,
    UnsupportedMediaTypeError,
    InternalError,
    GenerationError,
)
from .fields import FieldKind, SemanticHint, Constraint, FieldSpec, EntitySchema
from .validators import OperationValidators, ValidatorKind
from .db import PersistedEntity, ModelRegistry
from .pipeline import Stage, StageKind, PipelineExecutor, merge_criteria
from .generator import SyntheticRecordGenerator
from .rules import OperationKind, RouteRule, UploadRule, default_rules
from .request import EntityMeta, RequestContext
from .operations import HANDLERS, OperationResult
from .json_encoder import CrudJSONProvider, CrudJSONEncoder
from .crud_api import CrudAPI
from .__about__ import __version__, __description__

__all__ = (
    "__version__",
    "__description__",
    #
    "AUTOCRUD",
    "CrudAPI",
    # schema:
    "FieldKind",
    "SemanticHint",
    "Constraint",
    "FieldSpec",
    "EntitySchema",
    # validation:
    "OperationValidators",
    "ValidatorKind",
    # db:
    "PersistedEntity",
    "ModelRegistry",
    # pipeline:
    "Stage",
    "StageKind",
    "PipelineExecutor",
    "merge_criteria",
    # generator:
    "SyntheticRecordGenerator",
    # routes:
    "OperationKind",
    "RouteRule",
    "UploadRule",
    "default_rules",
    "EntityMeta",
    "RequestContext",
    "HANDLERS",
    "OperationResult",
    # json:
    "CrudJSONProvider",
    "CrudJSONEncoder",
    # Errors:
    "ConfigurationError",
    "CrudError",
    "ValidationError",
    "StorageValidationError",
    "ConflictError",
    "NotFoundError",
    "UnsupportedMediaTypeError",
    "InternalError",
    "GenerationError",
)
