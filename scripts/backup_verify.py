#!/usr/bin/env python3
"""Verify POS backup files offline.

Given a glob pattern, every matching backup (``.db`` or ``.json``) is checked
against its ``.meta.json`` sidecar and its own format. The script prints
``PASS`` or ``FAIL`` per file and exits non-zero if any file fails.
"""

from __future__ import annotations

import argparse
import glob
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))
from pos.app.services.backup import META_SUFFIX, verify_file  # noqa: E402


def verify(pattern: str) -> bool:
    """Return ``True`` if every backup matching ``pattern`` verifies."""

    matches = sorted(
        Path(p) for p in glob.glob(pattern) if not p.endswith(META_SUFFIX)
    )
    if not matches:
        print("FAIL: no matching backups")
        return False

    all_ok = True
    for path in matches:
        result = verify_file(path)
        failed = [c for c in result["checks"] if not c["passed"]]
        if failed:
            all_ok = False
            for check in failed:
                print(f"FAIL: {path.name}: {check['check']} {check['message']}".rstrip())
        else:
            print(f"PASS: {path.name}")
    return all_ok


def main() -> None:
    parser = argparse.ArgumentParser(description="Verify POS backups")
    parser.add_argument(
        "--file",
        required=True,
        help="Glob pattern for backup files (e.g. ./backups/pos_backup_*)",
    )
    args = parser.parse_args()

    ok = verify(args.file)
    print("PASS" if ok else "FAIL")
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
