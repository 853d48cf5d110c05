#!/usr/bin/env python3
"""
Dev helper: send a resource mapping to a local pmap server as a Pub/Sub push.

Wraps a mapping YAML/JSON file (or a generated sample) in a push envelope,
exactly as a push subscription would deliver a GCS finalize notification, and
POST-s it to the server root endpoint.

Usage
-----
# Basic - generated sample mapping, targeting localhost:8080
python scripts/send_push_message.py

# Send a specific mapping file
python scripts/send_push_message.py --file mappings/bucket.yaml

# Attach GitHub provenance attributes
python scripts/send_push_message.py --github-commit abc123 --github-repo org/repo

# Print the envelope without sending it
python scripts/send_push_message.py --dry-run
"""

import argparse
import json
import sys
import textwrap
from pathlib import Path

import httpx

from pmap.services.push_adapter import build_push_body


# ---------------------------------------------------------------------------
# Sample mapping
# ---------------------------------------------------------------------------

def _make_sample_mapping() -> bytes:
    """Return a minimal resource mapping YAML document as bytes."""
    lines = [
        "resource:",
        "  provider: gcp",
        "  name: //storage.googleapis.com/sample-bucket/sample-object",
        "contacts:",
        "  email:",
        "    - owner@google.com",
        "annotations:",
        "  source: send_push_message",
    ]
    return ("\n".join(lines) + "\n").encode()


def _detect_content_type(filename: str) -> str:
    return "application/json" if Path(filename).suffix.lower() == ".json" else "application/yaml"


def _print_response(response) -> None:
    status = response.status_code
    symbol = "OK" if status == 200 else "FAIL"
    print(f"\n[{symbol}] HTTP {status}")
    try:
        body = response.json()
        print(json.dumps(body, indent=2))
    except ValueError:
        print(response.text)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main() -> int:
    parser = argparse.ArgumentParser(
        prog="send_push_message.py",
        description="Send a test Pub/Sub push message to a pmap mapping server.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            Examples:
              python scripts/send_push_message.py
              python scripts/send_push_message.py --file mappings/bucket.yaml
              python scripts/send_push_message.py --url http://localhost:8080
        """),
    )
    parser.add_argument(
        "--url",
        default="http://localhost:8080",
        help="Server base URL (default: http://localhost:8080)",
    )
    parser.add_argument(
        "--file",
        default=None,
        metavar="PATH",
        help="Mapping file to send. A sample mapping is used if omitted.",
    )
    parser.add_argument("--bucket", default="sample-bucket", help="bucketId attribute")
    parser.add_argument(
        "--object",
        default="snapshots/gh-prefix/mappings/sample.yaml",
        help="objectId attribute",
    )
    parser.add_argument("--github-commit", default=None, help="github-commit attribute")
    parser.add_argument("--github-repo", default=None, help="github-repo attribute")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the push envelope without sending it.",
    )
    args = parser.parse_args()

    if args.file:
        file_path = Path(args.file)
        if not file_path.exists():
            print(f"ERROR: File not found: {file_path}", file=sys.stderr)
            return 1
        document = file_path.read_bytes()
        content_type = _detect_content_type(file_path.name)
        print(f"Sending file: {file_path} ({len(document):,} bytes)")
    else:
        document = _make_sample_mapping()
        content_type = "application/yaml"
        print(f"No --file specified; using generated sample mapping ({len(document)} bytes)")

    attributes = {
        "bucketId": args.bucket,
        "objectId": args.object,
        "contentType": content_type,
        "eventType": "OBJECT_FINALIZE",
    }
    if args.github_commit or args.github_repo:
        attributes.update({
            "github-commit": args.github_commit or "0000000",
            "github-repo": args.github_repo or "local/dev",
            "github-workflow": "send_push_message",
            "github-workflow-sha": "0000000",
        })

    body = build_push_body(document, attributes=attributes)
    endpoint = f"{args.url.rstrip('/')}/"

    print(f"\nEndpoint  : {endpoint}")
    print(f"Bucket    : {args.bucket}")
    print(f"Object    : {args.object}")

    if args.dry_run:
        print("\n[DRY RUN] Envelope:")
        print(json.dumps(body, indent=2))
        return 0

    try:
        response = httpx.post(endpoint, json=body, timeout=30)
    except httpx.ConnectError:
        print(
            f"\nERROR: Could not connect to {endpoint}\n"
            "Is the server running? Start it with:\n"
            "  pmap server",
            file=sys.stderr,
        )
        return 1

    _print_response(response)
    return 0 if response.status_code == 200 else 1


if __name__ == "__main__":
    sys.exit(main())
