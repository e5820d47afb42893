from __future__ import annotations

import sys

from app.workers.celery_app import celery_app


def main() -> None:
    """Launch a Celery worker; pass ``--beat`` to also run the expiry/reconciliation schedule."""
    argv = ["worker", "--loglevel=info"]
    if "--beat" in sys.argv[1:]:
        argv.append("--beat")
    celery_app.worker_main(argv)


if __name__ == "__main__":
    main()
