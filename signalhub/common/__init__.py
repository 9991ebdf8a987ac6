"""
SignalHub Common Module

Shared infrastructure for the correlation and learning packages.
"""

from .config import SignalHubConfig, load_config
from .embedding_cache import EmbeddingCache, hash_content
from .embedding_service import EmbeddingService
from .store import DurableStore, SQLiteStore
from .token_manager import TokenManager, TokenInfo

__all__ = [
    "SignalHubConfig",
    "load_config",
    "EmbeddingCache",
    "hash_content",
    "EmbeddingService",
    "DurableStore",
    "SQLiteStore",
    "TokenManager",
    "TokenInfo",
]
