"""Storage package providing persistence for users, wallets and alerts."""

from .models import UserRecord, WalletRecord
from .sqlite_repository import SQLiteRepository

__all__ = ["SQLiteRepository", "UserRecord", "WalletRecord"]
