"""
API module for the Deal Flow Engine.

Deal store and broker directory with in-memory/JSON storage.
"""

from .storage import (
    BrokerDefaults,
    BrokerDirectory,
    DealNotFoundError,
    DealStorage,
    StorageError,
    create_sample_data,
)

__all__ = [
    "BrokerDefaults",
    "BrokerDirectory",
    "DealNotFoundError",
    "DealStorage",
    "StorageError",
    "create_sample_data",
]
