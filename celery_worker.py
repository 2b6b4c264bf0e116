#!/usr/bin/env python3
"""
Celery worker for store notifications and follower fanout.
Consumes the ``notifications`` and ``fanout`` queues.
"""

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

if __name__ == "__main__":
    from core.celery import celery_app
    from core.logging import configure_logging

    configure_logging()
    celery_app.worker_main([
        "worker",
        "--loglevel=info",
        "--concurrency=4",
        "--queues=notifications,fanout",
        "--without-gossip",
        "--without-mingle",
    ])
