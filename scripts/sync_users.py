"""
Push users exported from the client's offline cache into the store.

The input is the JSON array the web client keeps under ``academic_users``.
Every entry goes through bulk reconciliation, so re-running the script with
the same file is safe.

    python scripts/sync_users.py users.json
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from quizboard.config import get_settings
from quizboard.dependencies import build_backend
from quizboard.errors import PartialBatchFailure

logger = logging.getLogger(__name__)


def load_users(path: Path) -> list:
    with path.open("r", encoding="utf-8") as f:
        payload = json.load(f)
    if not isinstance(payload, list):
        raise ValueError(f"{path} must contain a JSON array of users")
    return payload


async def sync_users(users: list) -> int:
    backend = build_backend(get_settings())
    try:
        reconciled = await backend.reconciler.bulk_reconcile(users)
    finally:
        await backend.close()
    return len(reconciled)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("path", type=Path, help="JSON file with an array of users")
    parser.add_argument("--debug", action="store_true", help="Verbose logging.")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO)

    try:
        users = load_users(args.path)
    except (OSError, ValueError) as exc:
        logger.error("Cannot read users from %s: %s", args.path, exc)
        return 1
    try:
        count = asyncio.run(sync_users(users))
    except PartialBatchFailure as exc:
        logger.error(
            "Sync stopped after %d users: %s. Re-run to finish.",
            len(exc.committed),
            exc,
        )
        return 1
    logger.info("Reconciled %d of %d users", count, len(users))
    return 0


if __name__ == "__main__":
    sys.exit(main())
