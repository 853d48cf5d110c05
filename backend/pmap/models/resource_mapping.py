"""
ResourceMapping record - the domain object carried through the pipeline.

Wire format (YAML or JSON):

  resource:
    provider: gcp
    name: //storage.googleapis.com/b1/o1
    subscope: tables/t1?source=org1&team=t2     # optional
  contacts:
    email:
      - owner@example.com
  annotations: {}                                # arbitrary, passed through

Missing fields take empty defaults, so a record with an empty provider still
decodes; it is the offline validators that report it.  Unknown fields are a
decode error.  Decoded records are frozen.
"""

import json
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from pmap.errors import MalformedMessageError


class Resource(BaseModel):
    """Identity of the resource a mapping describes."""

    model_config = {"extra": "forbid", "frozen": True}

    provider: str = ""
    name: str = ""
    subscope: str = ""

    @field_validator("provider", "name", "subscope", mode="before")
    @classmethod
    def _none_as_empty(cls, v: Any) -> Any:
        return "" if v is None else v


class Contacts(BaseModel):
    """Owners of the resource."""

    model_config = {"extra": "forbid", "frozen": True}

    email: list[str] = Field(default_factory=list)

    @field_validator("email", mode="before")
    @classmethod
    def _none_as_empty(cls, v: Any) -> Any:
        return [] if v is None else v


class ResourceMapping(BaseModel):
    """A decoded resource mapping record.  Immutable once built."""

    model_config = {"extra": "forbid", "frozen": True}

    resource: Resource = Field(default_factory=Resource)
    contacts: Contacts = Field(default_factory=Contacts)
    annotations: dict[str, Any] = Field(default_factory=dict)

    @field_validator("resource", "contacts", "annotations", mode="before")
    @classmethod
    def _none_as_empty(cls, v: Any) -> Any:
        return {} if v is None else v


def _is_json(content_type: Optional[str]) -> bool:
    return bool(content_type) and "json" in content_type.lower()


def decode_resource_mapping(
    data: bytes,
    content_type: Optional[str] = None,
) -> ResourceMapping:
    """
    Decode a YAML or JSON document into a ResourceMapping.

    JSON is chosen when content_type mentions json; otherwise the payload is
    read as YAML, which accepts JSON documents as well.

    Raises:
        MalformedMessageError: the payload is empty, not a mapping, or does
            not match the record schema.
    """
    if not data or not data.strip():
        raise MalformedMessageError("empty resource mapping payload")

    try:
        if _is_json(content_type):
            doc = json.loads(data)
        else:
            doc = yaml.safe_load(data)
    except (ValueError, yaml.YAMLError) as e:
        raise MalformedMessageError(f"failed to parse resource mapping: {e}") from e

    if not isinstance(doc, dict):
        raise MalformedMessageError(
            f"resource mapping must be a mapping, got {type(doc).__name__}"
        )

    try:
        return ResourceMapping.model_validate(doc)
    except ValidationError as e:
        raise MalformedMessageError(f"invalid resource mapping: {e}") from e
