# The context passed to every operation handler
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .db import ModelRegistry
from .fields import EntitySchema
from .pipeline import PipelineExecutor, Stage, criteria_filter, merge_criteria
from .rules import RouteRule
from .validators import OperationValidators


@dataclass(frozen=True)
class EntityMeta:
    """
    Everything derived from an EntitySchema when it is exposed, shared by all requests
    """

    name: str
    schema: EntitySchema
    model: Any
    validators: OperationValidators
    registry: ModelRegistry

    @property
    def label(self) -> str:
        return self.schema.label


@dataclass(frozen=True)
class RequestContext:
    """
    :param entity: EntityMeta of the requested entity
    :param rule: the RouteRule that matched the request
    :param session: sqlalchemy session
    :param route: "METHOD path" of the request
    :param body: the (validated) request body
    :param query: the url query arguments
    :param params: the (validated) url path parameters, eg. {"id": ...}
    """

    entity: EntityMeta
    rule: RouteRule
    session: Any
    route: str = ""
    body: Dict[str, Any] = field(default_factory=dict)
    query: Dict[str, Any] = field(default_factory=dict)
    params: Dict[str, Any] = field(default_factory=dict)

    @property
    def model(self):
        return self.entity.model

    @property
    def schema(self) -> EntitySchema:
        return self.entity.schema

    @property
    def label(self) -> str:
        return self.entity.label

    def query_model(self):
        return self.session.query(self.model)

    def populate(self, records: List[dict], fields: Optional[Sequence[str]] = None) -> List[dict]:
        """
        resolve the reference fields of the records
        """
        return self.entity.registry.populate(self.model, records, fields)

    def run_pipeline(self, stages: Sequence[Stage]) -> List[dict]:
        executor = PipelineExecutor(self.model, self.session, populate=self.populate)
        return executor.run(stages)

    def shape(self, criteria: Any) -> List[dict]:
        """Fetch the records matching the criteria and shape them for the response

        With a response pipeline the criteria are merged into its filter stage,
        otherwise the references of the matching records are populated.

        :param criteria: an id, a list of ids or a filter mapping
        :return: list of record dicts
        """
        pipeline = self.rule.response_pipeline
        if pipeline:
            stages = merge_criteria(pipeline, criteria)
        else:
            stages = (Stage.filter(criteria_filter(criteria)), Stage.sort({"created_at": 1, "id": 1}), Stage.populate())
        return self.run_pipeline(stages)

    def shape_one(self, record_id: str) -> Optional[dict]:
        records = self.shape(record_id)
        return records[0] if records else None
