"""
pmap command line.

Usage
-----
# Start the mapping server (configuration from the environment / .env)
pmap server

# Validate resource mapping YAML files under a directory
pmap validate-mapping --path path/to/mappings
"""

import argparse
import sys
import textwrap
from pathlib import Path
from typing import Optional, Sequence

from pmap.errors import ValidationErrors
from pmap.services.validation import validate_mapping_directory


def _run_server(args: argparse.Namespace) -> int:
    import uvicorn

    from pmap.config import load_config
    from pmap.main import configure_logging, create_app

    config = load_config()
    if args.port is not None:
        config.port = args.port
    configure_logging(config.log_level)
    try:
        config.validate_required()
    except ValueError as e:
        print(f"ERROR: invalid configuration: {e}", file=sys.stderr)
        return 1

    uvicorn.run(create_app(config=config), host=args.host, port=config.port)
    return 0


def _run_validate_mapping(args: argparse.Namespace) -> int:
    try:
        errors = validate_mapping_directory(Path(args.path))
    except FileNotFoundError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    if errors:
        print(str(ValidationErrors(errors)), file=sys.stderr)
        return 1
    print("Validation passed")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pmap",
        description="Resource mapping ingestion tools.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            Examples:
              pmap server --port 8080
              pmap validate-mapping --path mappings/
        """),
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    server = subparsers.add_parser("server", help="Start the mapping server.")
    server.add_argument(
        "--host",
        default="0.0.0.0",
        help="Interface to bind (default: 0.0.0.0)",
    )
    server.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to listen on (default: PORT env var, else 8080)",
    )
    server.set_defaults(func=_run_server)

    validate = subparsers.add_parser(
        "validate-mapping",
        help="Validate resource mapping YAML files under a path.",
    )
    validate.add_argument(
        "--path",
        required=True,
        metavar="PATH",
        help="Directory (or file) holding resource mapping YAML files.",
    )
    validate.set_defaults(func=_run_validate_mapping)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
