"""
Offline validation of resource mapping files.

Two levels of checking are offered:

  sanity_check_directory      - the minimal checks run over every uploaded
                                snapshot: contact emails parse and the
                                resource provider is set.
  validate_mapping_directory  - the full rule set (validate_resource_mapping)
                                run over *.yaml files before they are merged.

Both walk the whole tree and collect every problem instead of stopping at the
first, so one run reports everything wrong with a change.  The online
pipeline never calls into this module.
"""

import os
import re
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import parse_qsl, urlsplit

from email_validator import EmailNotValidError, validate_email

from pmap.errors import MalformedMessageError
from pmap.models.resource_mapping import ResourceMapping, decode_resource_mapping

# Annotation key reserved for data added by the asset inventory enrichment.
ANNOTATION_KEY_ASSET_INFO = "assetInfo"

# Private names that resolve inside a network; the address ends with the domain,
# optionally followed by the closing bracket of a display-name form.
_PRIVATE_DOMAIN_SUFFIX = re.compile(r"(?<=[@.])(?:localhost|local)(?=>?\s*\Z)", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Field rules
# ---------------------------------------------------------------------------

def email_error(email: str) -> Optional[str]:
    """
    Return why email is not a valid address, or None when it is.

    Only RFC 5322 syntax is checked: a display name, a quoted local part and
    a dotless or private domain (``owner@localhost``, ``ops@corp.local``) are
    all accepted.  A list of addresses is not one address.
    """
    if not email:
        return "empty address"
    # email-validator refuses special-use names outright; check them as the
    # "test" name its test_environment mode already allows.
    candidate = _PRIVATE_DOMAIN_SUFFIX.sub("test", email)
    try:
        validate_email(
            candidate,
            check_deliverability=False,
            globally_deliverable=False,
            test_environment=True,
            allow_display_name=True,
            allow_quoted_local=True,
        )
    except EmailNotValidError as e:
        return str(e)
    return None


def is_valid_email(email: str) -> bool:
    return email_error(email) is None


def subscope_error(subscope: str) -> Optional[str]:
    """
    Check that the qualifiers of a subscope are in alphabetical order.

    A subscope looks like ``databases/db1/tables/t1?source=org1&team=t2``;
    keys, and values of a repeated key, must be sorted.
    """
    if not subscope:
        return None

    try:
        query = urlsplit(subscope).query
    except ValueError as e:
        return f"subscope validation failed: failed to parse subscope string {subscope}: {e}"
    if not query:
        return None

    try:
        pairs = parse_qsl(query, keep_blank_values=True, strict_parsing=True)
    except ValueError as e:
        return f"subscope validation failed: failed to parse qualifier string {query}: {e}"

    grouped: dict[str, list[str]] = {}
    for key, value in pairs:
        grouped.setdefault(key, []).append(value)

    want = "&".join(
        f"{key}={value}"
        for key in sorted(grouped)
        for value in sorted(grouped[key])
    )
    if want != query:
        return (
            "subscope validation failed: qualifiers must be in alphabetical order, "
            f"want: {want}, got: {query}"
        )
    return None


def validate_resource_mapping(mapping: ResourceMapping) -> list[str]:
    """Apply every mapping rule and return all violations (empty when valid)."""
    errors: list[str] = []

    for email in mapping.contacts.email:
        reason = email_error(email)
        if reason:
            errors.append(f"invalid owner: {reason}")

    if ANNOTATION_KEY_ASSET_INFO in mapping.annotations:
        errors.append(f"reserved key is included: {ANNOTATION_KEY_ASSET_INFO}")

    if not mapping.resource.name:
        errors.append("empty resource name")
    if not mapping.resource.provider:
        errors.append("empty resource provider")

    reason = subscope_error(mapping.resource.subscope)
    if reason:
        errors.append(reason)

    return errors


# ---------------------------------------------------------------------------
# Directory walks
# ---------------------------------------------------------------------------

def fetch_files(root: Path, suffix: Optional[str] = None) -> list[Path]:
    """Recursively list files under root (or root itself), sorted."""
    root = Path(root)
    if root.is_file():
        return [root] if suffix is None or root.suffix == suffix else []
    if not root.is_dir():
        raise FileNotFoundError(f"no such directory: {root}")

    files: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for name in sorted(filenames):
            path = Path(dirpath) / name
            if suffix is None or path.suffix == suffix:
                files.append(path)
    return files


def _relative(path: Path, root: Path) -> str:
    if path == root:
        return path.name
    return path.relative_to(root).as_posix()


def _load_mapping(path: Path, rel: str, errors: list[str]) -> Optional[ResourceMapping]:
    try:
        data = path.read_bytes()
    except OSError as e:
        errors.append(f'failed to read file from "{rel}": {e}')
        return None
    try:
        return decode_resource_mapping(data)
    except MalformedMessageError as e:
        errors.append(
            f'failed to unmarshal object yaml from file "{rel}" to resource mapping: {e}'
        )
        return None


def sanity_check_directory(
    root: Path,
    progress: Callable[[str], None] = print,
) -> list[str]:
    """
    Check contact emails and resource provider of every file under root.

    Calls progress once per file; returns every problem found.
    """
    root = Path(root)
    errors: list[str] = []
    for path in fetch_files(root):
        rel = _relative(path, root)
        progress(f'Processing file "{rel}"')
        mapping = _load_mapping(path, rel, errors)
        if mapping is None:
            continue
        for email in mapping.contacts.email:
            if not is_valid_email(email):
                errors.append(f'email "{email}" contained from file "{rel}" is not valid')
        if not mapping.resource.provider:
            errors.append(
                f'resource provider "{mapping.resource.provider}" contained from '
                f'file "{rel}" is not valid'
            )
    return errors


def validate_mapping_directory(
    root: Path,
    progress: Callable[[str], None] = print,
) -> list[str]:
    """Apply validate_resource_mapping to every *.yaml file under root."""
    root = Path(root)
    errors: list[str] = []
    for path in fetch_files(root, suffix=".yaml"):
        rel = _relative(path, root)
        progress(f'processing file "{rel}"')
        mapping = _load_mapping(path, rel, errors)
        if mapping is None:
            continue
        errors.extend(f'file "{rel}": {e}' for e in validate_resource_mapping(mapping))
    return errors
