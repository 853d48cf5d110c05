"""
Pydantic models for the Pub/Sub push protocol and the events we publish.

Models:
  PushMessage    - the message wrapped in a push request
  PushRequest    - the JSON body Pub/Sub POSTs to a push endpoint
  GitHubSource   - provenance of a mapping file committed in a GitHub repo
  PmapEvent      - event published downstream once a mapping is handled
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from pmap.models.resource_mapping import ResourceMapping


# ---------------------------------------------------------------------------
# Push request
# ---------------------------------------------------------------------------

class PushMessage(BaseModel):
    """
    A Pub/Sub message as delivered by a push subscription.

    Pub/Sub sends camelCase keys (messageId, publishTime); data stays
    base64-encoded here and is decoded by the push adapter.
    """
    model_config = {"extra": "ignore", "populate_by_name": True}

    data: str = ""
    attributes: dict[str, str] = Field(default_factory=dict)
    message_id: str = Field("", alias="messageId")
    publish_time: Optional[datetime] = Field(None, alias="publishTime")

    @field_validator("attributes", mode="before")
    @classmethod
    def _none_as_empty(cls, v: Any) -> Any:
        return {} if v is None else v


class PushRequest(BaseModel):
    """Body of a push delivery request."""
    model_config = {"extra": "ignore"}

    message: PushMessage
    subscription: str = ""


# ---------------------------------------------------------------------------
# Downstream events
# ---------------------------------------------------------------------------

class GitHubSource(BaseModel):
    """Where in GitHub the mapping file came from."""

    repo_name: str
    file_path: str = ""
    commit: str
    workflow: str
    workflow_sha: str
    workflow_triggered_timestamp: Optional[datetime] = None
    workflow_run_id: str = ""
    workflow_run_attempt: int = 0


class PmapEvent(BaseModel):
    """
    Event published to the success (or failure) topic.

    payload is the mapping exactly as decoded; timestamp is when this
    service finished handling it.
    """

    payload: ResourceMapping
    type: str = "ResourceMapping"
    timestamp: datetime
    github_source: Optional[GitHubSource] = None
