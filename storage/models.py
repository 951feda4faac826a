"""Dataclasses representing stored users and wallets."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(slots=True)
class UserRecord:
    user_id: str
    chat_id: Optional[str]
    locale: str
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class WalletRecord:
    id: int
    user_id: str
    chain: str
    address: str
    is_active: bool
    created_at: datetime
