"""Database models — re-exports all models.

Import from here:  from ledgersync.models import Order, SalesJournal, ...
Or from submodules: from ledgersync.models.orders import Order
"""

from .base import Base  # noqa: F401

# Order mirror & customers imported from orders
from .orders import Customer, Order  # noqa: F401

# Document numbering
from .numbering import DocumentNumber  # noqa: F401

# Sales journals
from .journals import SalesJournal  # noqa: F401

# Sync bookkeeping
from .sync import SyncLog, SyncState  # noqa: F401
