"""
Pub/Sub push adapter.

Turns the raw body of a push request into the pieces the event handler
works with, and back (build_push_body, used by tests and the dev script).

Push request body:

  {
    "message": {
      "data":        base64 str   - the ResourceMapping document
      "attributes":  {str: str}   - bucketId, objectId, contentType, github-*
      "messageId":   str
      "publishTime": RFC3339 str
    },
    "subscription": str
  }

Every failure here raises MalformedMessageError: redelivering the same bytes
can never succeed, so the router answers 400.
"""

import base64
import binascii
import logging
from datetime import datetime
from typing import Optional

from pydantic import ValidationError

from pmap.errors import MalformedMessageError
from pmap.models.pubsub import GitHubSource, PushMessage, PushRequest
from pmap.models.resource_mapping import ResourceMapping, decode_resource_mapping

logger = logging.getLogger(__name__)

# Pub/Sub caps push bodies well below this; anything larger is not ours.
MAX_REQUEST_BYTES = 256_000

# Custom object metadata set by the snapshot workflows that upload mappings.
ATTR_GITHUB_COMMIT = "github-commit"
ATTR_GITHUB_REPO = "github-repo"
ATTR_GITHUB_WORKFLOW = "github-workflow"
ATTR_GITHUB_WORKFLOW_SHA = "github-workflow-sha"
ATTR_GITHUB_TRIGGERED_TIMESTAMP = "github-workflow-triggered-timestamp"
ATTR_GITHUB_RUN_ID = "github-run-id"
ATTR_GITHUB_RUN_ATTEMPT = "github-run-attempt"
GCS_PATH_SEPARATOR = "/gh-prefix/"

_REQUIRED_GITHUB_ATTRS = (
    ATTR_GITHUB_COMMIT,
    ATTR_GITHUB_REPO,
    ATTR_GITHUB_WORKFLOW,
    ATTR_GITHUB_WORKFLOW_SHA,
)


def parse_push_request(body: bytes) -> PushRequest:
    """Parse and size-check a push request body."""
    if len(body) > MAX_REQUEST_BYTES:
        raise MalformedMessageError(
            f"request body is {len(body)} bytes, limit is {MAX_REQUEST_BYTES}"
        )
    try:
        return PushRequest.model_validate_json(body)
    except ValidationError as e:
        raise MalformedMessageError(f"failed to unmarshal the request body: {e}") from e


def decode_message_data(message: PushMessage) -> bytes:
    """Base64-decode the message payload (strict alphabet)."""
    try:
        return base64.b64decode(message.data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedMessageError(f"message data is not valid base64: {e}") from e


def decode_mapping(message: PushMessage) -> ResourceMapping:
    """Decode the message payload into a ResourceMapping."""
    data = decode_message_data(message)
    return decode_resource_mapping(data, message.attributes.get("contentType"))


def parse_github_source(attributes: dict[str, str]) -> Optional[GitHubSource]:
    """
    Build GitHubSource from github-* attributes.

    Returns None when no github-* attribute is present.  When any is present,
    commit, repo, workflow and workflow sha are all required.
    """
    if not any(key.startswith("github-") for key in attributes):
        return None

    missing = [key for key in _REQUIRED_GITHUB_ATTRS if key not in attributes]
    if missing:
        raise MalformedMessageError(f"{', '.join(missing)} not found")

    run_attempt = 0
    raw_attempt = attributes.get(ATTR_GITHUB_RUN_ATTEMPT)
    if raw_attempt:
        try:
            run_attempt = int(raw_attempt)
        except ValueError:
            logger.debug(
                f"Ignoring unparsable {ATTR_GITHUB_RUN_ATTEMPT} attribute {raw_attempt!r}"
            )

    triggered_at: Optional[datetime] = None
    raw_ts = attributes.get(ATTR_GITHUB_TRIGGERED_TIMESTAMP)
    if raw_ts:
        try:
            triggered_at = datetime.fromisoformat(raw_ts.replace("Z", "+00:00"))
        except ValueError as e:
            raise MalformedMessageError(f"failed to parse date {raw_ts!r}: {e}") from e

    file_path = ""
    parts = attributes.get("objectId", "").split(GCS_PATH_SEPARATOR)
    if len(parts) == 2:
        file_path = parts[1]

    return GitHubSource(
        repo_name=attributes[ATTR_GITHUB_REPO],
        file_path=file_path,
        commit=attributes[ATTR_GITHUB_COMMIT],
        workflow=attributes[ATTR_GITHUB_WORKFLOW],
        workflow_sha=attributes[ATTR_GITHUB_WORKFLOW_SHA],
        workflow_triggered_timestamp=triggered_at,
        workflow_run_id=attributes.get(ATTR_GITHUB_RUN_ID, ""),
        workflow_run_attempt=run_attempt,
    )


def build_push_body(
    document: bytes,
    attributes: Optional[dict[str, str]] = None,
    message_id: str = "1",
    publish_time: str = "2024-01-01T00:00:00Z",
    subscription: str = "projects/test-project/subscriptions/test-sub",
) -> dict:
    """Wrap a mapping document the way a push subscription would deliver it."""
    return {
        "message": {
            "data": base64.b64encode(document).decode(),
            "attributes": dict(attributes or {}),
            "messageId": message_id,
            "publishTime": publish_time,
        },
        "subscription": subscription,
    }
