"""
Resource mapping decoding and push envelope parsing.

Coverage:
  - YAML and JSON payloads decode into a frozen ResourceMapping
  - missing fields and explicit nulls take empty defaults
  - unknown fields, non-mapping documents and empty payloads are malformed
  - push body size limit, strict base64, GitHub provenance attributes
"""

import base64
import json
import logging
from datetime import timezone

import pytest
from pydantic import ValidationError

from pmap.errors import MalformedMessageError
from pmap.models.pubsub import PushMessage
from pmap.models.resource_mapping import ResourceMapping, decode_resource_mapping
from pmap.services.push_adapter import (
    MAX_REQUEST_BYTES,
    build_push_body,
    decode_mapping,
    decode_message_data,
    parse_github_source,
    parse_push_request,
)


FULL_YAML = b"""\
resource:
  provider: gcp
  name: //bigquery.googleapis.com/projects/p1/datasets/d1
  subscope: tables/t1?source=org1&team=t2
contacts:
  email:
    - owner@google.com
    - Team Lead <lead@google.com>
annotations:
  team:
    name: storage
"""


# ---------------------------------------------------------------------------
# decode_resource_mapping
# ---------------------------------------------------------------------------

class TestDecodeResourceMapping:

    def test_yaml_document(self):
        mapping = decode_resource_mapping(FULL_YAML)

        assert mapping.resource.provider == "gcp"
        assert mapping.resource.name == "//bigquery.googleapis.com/projects/p1/datasets/d1"
        assert mapping.resource.subscope == "tables/t1?source=org1&team=t2"
        assert mapping.contacts.email == ["owner@google.com", "Team Lead <lead@google.com>"]
        assert mapping.annotations == {"team": {"name": "storage"}}

    def test_json_document_with_content_type(self):
        doc = json.dumps({"resource": {"provider": "gcp", "name": "//r"}}).encode()
        mapping = decode_resource_mapping(doc, "application/json; charset=utf-8")
        assert mapping.resource.name == "//r"

    def test_json_document_read_as_yaml(self):
        doc = json.dumps({"resource": {"provider": "gcp", "name": "//r"}}).encode()
        assert decode_resource_mapping(doc).resource.provider == "gcp"

    def test_missing_fields_take_defaults(self):
        mapping = decode_resource_mapping(b"resource:\n  name: //r\n")
        assert mapping.resource.provider == ""
        assert mapping.resource.subscope == ""
        assert mapping.contacts.email == []
        assert mapping.annotations == {}

    def test_nulls_take_defaults(self):
        mapping = decode_resource_mapping(
            b"resource:\n  provider: null\ncontacts:\n  email: null\nannotations: null\n"
        )
        assert mapping.resource.provider == ""
        assert mapping.contacts.email == []
        assert mapping.annotations == {}

    def test_empty_payload(self):
        with pytest.raises(MalformedMessageError, match="empty"):
            decode_resource_mapping(b"")
        with pytest.raises(MalformedMessageError, match="empty"):
            decode_resource_mapping(b"   \n")

    def test_unknown_top_level_field(self):
        with pytest.raises(MalformedMessageError):
            decode_resource_mapping(b"resource:\n  name: //r\nowner: someone\n")

    def test_unknown_nested_field(self):
        with pytest.raises(MalformedMessageError):
            decode_resource_mapping(b"contacts:\n  phone:\n    - '555'\n")

    def test_scalar_document(self):
        with pytest.raises(MalformedMessageError, match="must be a mapping"):
            decode_resource_mapping(b"just a string\n")

    def test_invalid_json(self):
        with pytest.raises(MalformedMessageError):
            decode_resource_mapping(b"{not json", "application/json")

    def test_wrong_type(self):
        with pytest.raises(MalformedMessageError):
            decode_resource_mapping(b"contacts:\n  email: {a: b}\n")

    def test_record_is_frozen(self):
        mapping = decode_resource_mapping(FULL_YAML)
        with pytest.raises(ValidationError):
            mapping.resource.name = "//other"

    def test_model_dump_round_trips(self):
        mapping = decode_resource_mapping(FULL_YAML)
        assert ResourceMapping.model_validate(mapping.model_dump()) == mapping


# ---------------------------------------------------------------------------
# Push envelope
# ---------------------------------------------------------------------------

class TestParsePushRequest:

    def test_parses_camel_case_envelope(self):
        body = build_push_body(
            FULL_YAML,
            attributes={"bucketId": "b1"},
            message_id="m-7",
            publish_time="2023-04-25T17:44:57Z",
        )
        push = parse_push_request(json.dumps(body).encode())

        assert push.message.message_id == "m-7"
        assert push.message.attributes == {"bucketId": "b1"}
        assert push.message.publish_time.tzinfo is not None
        assert push.message.publish_time.astimezone(timezone.utc).hour == 17
        assert push.subscription == "projects/test-project/subscriptions/test-sub"

    def test_unknown_envelope_fields_are_ignored(self):
        body = build_push_body(FULL_YAML)
        body["message"]["orderingKey"] = "k"
        body["deliveryAttempt"] = 3
        push = parse_push_request(json.dumps(body).encode())
        assert push.message.data

    def test_null_attributes(self):
        body = build_push_body(FULL_YAML)
        body["message"]["attributes"] = None
        push = parse_push_request(json.dumps(body).encode())
        assert push.message.attributes == {}

    def test_body_over_limit(self):
        with pytest.raises(MalformedMessageError, match="limit"):
            parse_push_request(b" " * (MAX_REQUEST_BYTES + 1))

    def test_not_json(self):
        with pytest.raises(MalformedMessageError, match="unmarshal"):
            parse_push_request(b"<xml/>")

    def test_message_missing(self):
        with pytest.raises(MalformedMessageError):
            parse_push_request(b'{"subscription": "s"}')


class TestDecodeMessageData:

    def test_valid_base64(self):
        message = PushMessage(data=base64.b64encode(b"hello").decode())
        assert decode_message_data(message) == b"hello"

    def test_rejects_non_alphabet_characters(self):
        with pytest.raises(MalformedMessageError, match="base64"):
            decode_message_data(PushMessage(data="aGVs*bG8="))

    def test_rejects_bad_padding(self):
        with pytest.raises(MalformedMessageError):
            decode_message_data(PushMessage(data="aGVsbG8"))

    def test_decode_mapping_uses_content_type(self):
        doc = json.dumps({"resource": {"name": "//r", "provider": "gcp"}}).encode()
        message = PushMessage(
            data=base64.b64encode(doc).decode(),
            attributes={"contentType": "application/json"},
        )
        assert decode_mapping(message).resource.name == "//r"


# ---------------------------------------------------------------------------
# GitHub provenance
# ---------------------------------------------------------------------------

def _github_attrs(**overrides) -> dict:
    attrs = {
        "objectId": "snapshots/gh-prefix/teams/storage/bucket.yaml",
        "github-commit": "abc123",
        "github-repo": "org/mappings",
        "github-workflow": "snapshot-file-change",
        "github-workflow-sha": "def456",
        "github-run-id": "5050509831",
        "github-run-attempt": "1",
        "github-workflow-triggered-timestamp": "2023-04-25T17:44:57Z",
    }
    attrs.update(overrides)
    return {k: v for k, v in attrs.items() if v is not None}


class TestParseGitHubSource:

    def test_no_github_attributes(self):
        assert parse_github_source({"bucketId": "b1", "objectId": "o1"}) is None

    def test_all_attributes(self):
        source = parse_github_source(_github_attrs())

        assert source.repo_name == "org/mappings"
        assert source.commit == "abc123"
        assert source.workflow == "snapshot-file-change"
        assert source.workflow_sha == "def456"
        assert source.workflow_run_id == "5050509831"
        assert source.workflow_run_attempt == 1
        assert source.file_path == "teams/storage/bucket.yaml"
        assert source.workflow_triggered_timestamp.year == 2023
        assert source.workflow_triggered_timestamp.tzinfo is not None

    def test_optional_attributes_absent(self):
        source = parse_github_source(_github_attrs(**{
            "github-run-id": None,
            "github-run-attempt": None,
            "github-workflow-triggered-timestamp": None,
        }))
        assert source.workflow_run_id == ""
        assert source.workflow_run_attempt == 0
        assert source.workflow_triggered_timestamp is None

    @pytest.mark.parametrize(
        "missing",
        ["github-commit", "github-repo", "github-workflow", "github-workflow-sha"],
    )
    def test_required_attribute_missing(self, missing):
        with pytest.raises(MalformedMessageError, match=f"{missing} not found"):
            parse_github_source(_github_attrs(**{missing: None}))

    def test_bad_timestamp(self):
        with pytest.raises(MalformedMessageError, match="failed to parse date"):
            parse_github_source(
                _github_attrs(**{"github-workflow-triggered-timestamp": "not-a-date"})
            )

    def test_unparseable_run_attempt_is_ignored_and_logged(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="pmap.services.push_adapter"):
            source = parse_github_source(_github_attrs(**{"github-run-attempt": "first"}))

        assert source.workflow_run_attempt == 0
        assert any(
            "github-run-attempt" in r.getMessage() and "'first'" in r.getMessage()
            for r in caplog.records
        )

    def test_object_without_prefix_separator(self):
        source = parse_github_source(_github_attrs(objectId="plain/object.yaml"))
        assert source.file_path == ""
