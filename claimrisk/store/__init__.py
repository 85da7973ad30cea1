from .base import ClaimStore
from .memory import InMemoryClaimStore
from .sqlite import SQLiteClaimStore

__all__ = ["ClaimStore", "InMemoryClaimStore", "SQLiteClaimStore"]
