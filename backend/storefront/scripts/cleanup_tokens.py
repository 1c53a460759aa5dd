"""
Delete expired refresh tokens once, outside the scheduler.

    python -m storefront.scripts.cleanup_tokens
    python -m storefront.scripts.cleanup_tokens --enqueue
"""
from __future__ import annotations

import argparse
import logging

from storefront.celery_app import enqueue
from storefront.tasks.maintenance import cleanup_expired_refresh_tokens


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Delete expired refresh tokens.")
    parser.add_argument(
        "--enqueue",
        action="store_true",
        help="Send the job to the Celery broker instead of running it here.",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if args.enqueue:
        result = enqueue(cleanup_expired_refresh_tokens)
        print(f"Queued cleanup task: {result.id}")
        return 0

    count = cleanup_expired_refresh_tokens()
    print(f"Cleaned up {count} expired refresh tokens")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
