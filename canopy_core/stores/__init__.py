from canopy_core.stores.database import Database, close_databases, get_database
from canopy_core.stores.history import SearchHistoryStore, rank_tags
from canopy_core.stores.workspace import WorkspaceStore

__all__ = [
    "Database",
    "SearchHistoryStore",
    "WorkspaceStore",
    "close_databases",
    "get_database",
    "rank_tags",
]
