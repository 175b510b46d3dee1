"""
Dramatiq Worker Entrypoint

This module serves as the entry point for Dramatiq workers.
It imports all actor modules to register them with the broker.

Usage:
    dramatiq app.worker --processes 2 --threads 1 --verbose

Procfile Configuration:
    worker: dramatiq app.worker --processes 2 --threads 1 --verbose

Pattern learning is I/O-bound (oracle calls, DB queries), so threads work
well; corpus scans are capped per run so memory stays flat.
"""

import structlog

from app.actors import broker
from app.database import init_db
from app.services.monitoring import init_sentry, setup_logging

setup_logging()
init_sentry()
init_db()

logger = structlog.get_logger()

# Worker health check log
logger.info("worker_ready", broker=type(broker).__name__, actors=sorted(broker.get_declared_actors()))
