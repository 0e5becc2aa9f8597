"""Pydantic request/response schemas for the HTTP API."""

from datetime import datetime
from typing import Any
from typing import Dict
from typing import List
from typing import Optional

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field

from siphon.utils.time import UTCBaseModel


class StateMachineStepOut(BaseModel):
    needs_input: bool
    complete: bool
    prompt: str = ""
    prompt_is_secret: bool = False
    post_to_url: str = ""
    post_params: Dict[str, Any] = Field(default_factory=dict)
    post_params_value_key: str = "value"
    output: str = ""
    error_code: str = ""


class ServiceIntegrationCreate(BaseModel):
    organization_key: str
    service_name: str
    table_name: Optional[str] = None


class TransitionIn(BaseModel):
    value: str = ""


class SyncTargetCreate(BaseModel):
    service_integration_identifier: Optional[str] = None
    connection_url: Optional[str] = None
    period_seconds: Optional[int] = None
    schema_name: str = Field(default="", alias="schema")
    table: str = ""

    model_config = ConfigDict(populate_by_name=True)


class SyncTargetOut(UTCBaseModel):
    opaque_id: str
    service_integration_opaque_id: str
    connection_url: str
    schema_name: str = Field(default="", alias="schema")
    table: str
    period_seconds: int
    last_synced_at: Optional[datetime] = None

    model_config = ConfigDict(populate_by_name=True)


class SyncTargetList(BaseModel):
    items: List[SyncTargetOut]
    message: str = ""


class WebhookSubscriptionCreate(BaseModel):
    url: str
    webhook_secret: str = ""
    service_integration_identifier: Optional[str] = None


class WebhookSubscriptionOut(UTCBaseModel):
    opaque_id: str
    deliver_to_url: str
    service_integration_opaque_id: Optional[str] = None
    deactivated_at: Optional[datetime] = None
