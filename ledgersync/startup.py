"""
startup.py — Database Startup Schema Sync (Idempotent)

Tables and indexes are defined in the ORM models and created via
Base.metadata.create_all(checkfirst=True). Alembic owns real migrations;
this only guarantees a fresh database is usable on first boot.

Called by: main.py lifespan
Depends on: database.py (engine), models (Base)
"""

import logging
import os

from .database import engine

log = logging.getLogger(__name__)


def run_startup_migrations() -> None:
    """Execute all idempotent startup operations. Safe to call on every app boot."""
    if os.environ.get("TESTING"):
        log.info("TESTING mode, skipping startup migrations")
        return

    from .models import Base

    Base.metadata.create_all(bind=engine, checkfirst=True)
    log.info("ORM schema sync complete (create_all checkfirst=True)")
