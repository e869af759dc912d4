"""
routers/ — FastAPI route modules.

Each file contains a thin APIRouter. All business logic
lives in services/ and sync_engine.py. Routers validate input,
call services, and return responses. Domain errors propagate to
the LedgerSyncError handler in main.py.
"""
