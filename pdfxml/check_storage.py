"""
Report whether the configured MongoDB is reachable.

Exit codes: 0 reachable, 1 unreachable, 2 not configured.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from pymongo.errors import PyMongoError

from pdfxml.config import get_settings
from pdfxml.mongo import MongoConnection, mask_uri

logger = logging.getLogger(__name__)


async def _check(connection: MongoConnection) -> bool:
    try:
        return await connection.connect()
    finally:
        await connection.close()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Check MongoDB reachability")
    parser.add_argument(
        "--uri",
        type=str,
        default=None,
        help="Override MONGODB_URI",
    )
    parser.add_argument(
        "-a",
        "--attempts",
        type=int,
        default=None,
        help="Connection attempts before giving up",
    )
    parser.add_argument(
        "--retry-delay-seconds",
        type=float,
        default=None,
        help="Seconds between attempts",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    settings = get_settings()
    uri = args.uri or settings.mongodb_uri
    if not uri:
        print("MongoDB is not configured (set MONGODB_URI)")
        return 2

    overrides: dict = {"mongodb_uri": uri}
    if args.attempts is not None:
        overrides["mongo_max_connection_attempts"] = args.attempts
    if args.retry_delay_seconds is not None:
        overrides["mongo_retry_delay_seconds"] = args.retry_delay_seconds

    try:
        connection = MongoConnection.from_settings(settings.model_copy(update=overrides))
    except PyMongoError as exc:
        print(f"Invalid MongoDB configuration: {exc}")
        return 1

    if asyncio.run(_check(connection)):
        print(f"MongoDB reachable at {mask_uri(uri)}")
        return 0
    print(f"MongoDB unreachable at {mask_uri(uri)}")
    return 1


if __name__ == "__main__":
    sys.exit(main())
