"""Request bodies for the HTTP endpoints.

Field names are camelCase on the wire; snake_case names are accepted too
for callers still sending the older payload shape.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as SchemaError
from pydantic.alias_generators import to_camel

from kypipeline.core.errors import ValidationError
from kypipeline.line.formatters import WeatherSlot


class RequestModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class ApprovalRequest(RequestModel):
    ky_entry_id: str = ""
    project_id: str = ""
    action: Optional[str] = None
    actor_id: Optional[str] = None
    note: Optional[str] = None
    # Optional announcement after a successful approve
    broadcast: bool = False
    title: Optional[str] = None
    url: Optional[str] = None


class BroadcastRequest(RequestModel):
    text: Optional[str] = None
    title: Optional[str] = None
    url: Optional[str] = None
    note: Optional[str] = None
    work_detail: Optional[str] = None
    workers: Optional[int] = None
    third_party_level: Optional[str] = None
    weather_slots: Optional[list[WeatherSlot]] = None
    ai_hazards: Optional[str] = None
    ai_countermeasures: Optional[str] = None
    ai_third_party: Optional[str] = None


class VisionAnalyzeRequest(RequestModel):
    image_url: Optional[str] = None


def parse_body(model: type[RequestModel], data: Any) -> Any:
    """Validate a decoded JSON body against a request model.

    Raises:
        ValidationError: Body is not an object or fields have wrong types
    """
    if not isinstance(data, dict):
        raise ValidationError("request body must be a JSON object")
    try:
        return model.model_validate(data)
    except SchemaError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise ValidationError(f"invalid fields: {fields}") from None
