"""
Sanity checker for resource mapping snapshots.

Reads every file under a directory, decodes each as a resource mapping and
reports, for all files at once, contact emails that are not valid addresses
and empty resource providers.

Usage
-----
pmap-sanity-check path/to/snapshot

Exits 1 when any problem was found; the combined report goes to stderr.
"""

import argparse
import sys
from pathlib import Path
from typing import Optional, Sequence

from pmap.errors import ValidationErrors
from pmap.services.validation import sanity_check_directory


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="pmap-sanity-check",
        description="Sanity check the resource mapping files under a directory.",
    )
    parser.add_argument("path", metavar="PATH", help="Directory to check.")
    args = parser.parse_args(argv)

    try:
        errors = sanity_check_directory(Path(args.path))
    except FileNotFoundError as e:
        print(f"failed to fetch extracted files in dir {args.path}: {e}", file=sys.stderr)
        return 1

    if errors:
        print(str(ValidationErrors(errors)), file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
