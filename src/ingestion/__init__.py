"""
Data Ingestion Module
"""
from .catalog import CatalogMapping, build_catalog_mapping
from .categorization import infer_category
from .historical_sync import HistoricalSyncEngine, SyncReport
from .upsert import OrderWriteError, UpsertEngine, UpsertResult

__all__ = [
    "CatalogMapping",
    "build_catalog_mapping",
    "infer_category",
    "HistoricalSyncEngine",
    "SyncReport",
    "OrderWriteError",
    "UpsertEngine",
    "UpsertResult",
]
