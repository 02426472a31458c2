#!/usr/bin/env python3
"""Replay a saved form webhook body: show what Bitrix would receive, optionally send it."""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict


def _bootstrap_python_path() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    sys.path.insert(0, str(repo_root))


_bootstrap_python_path()

from dotenv import load_dotenv  # noqa: E402

load_dotenv()

from tally_bitrix.config import BridgeSettings  # noqa: E402
from tally_bitrix.submission import (  # noqa: E402
    FORM_PROFILES,
    build_dictionary,
    prepare_submission,
    run_submission,
)


def dry_run(payload: Dict[str, Any], settings: BridgeSettings) -> Dict[str, Any]:
    prepared = prepare_submission(
        payload,
        dictionary=build_dictionary(settings),
        debug_hints=settings.debug_hints,
    )
    return {
        "flat": dict(prepared.flat),
        "record": asdict(prepared.record),
        "comments": prepared.comments,
    }


def main() -> None:
    parser = argparse.ArgumentParser(description="Replay a saved form webhook payload.")
    parser.add_argument("file", help="Path to the JSON body captured from the webhook")
    parser.add_argument(
        "--form",
        choices=sorted(FORM_PROFILES),
        default="request",
        help="Which endpoint profile to apply (default: request)",
    )
    parser.add_argument("--submit", action="store_true", help="Actually create the record")
    parser.add_argument("--pretty", action="store_true", help="Pretty print JSON")
    args = parser.parse_args()

    try:
        payload = json.loads(Path(args.file).read_text(encoding="utf-8"))
        settings = BridgeSettings.from_env()
        if args.submit:
            output = run_submission(payload, args.form, settings=settings).to_dict()
        else:
            output = dry_run(payload, settings)
    except Exception as exc:  # pragma: no cover - CLI convenience
        parser.error(str(exc))

    print(json.dumps(output, ensure_ascii=False, indent=2 if args.pretty else None))


if __name__ == "__main__":
    main()
