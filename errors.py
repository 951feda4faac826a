"""Error types shared by the balance, price and alert layers."""
from __future__ import annotations

from typing import Optional


class RadarError(Exception):
    """Base class for all application errors."""


class ConfigurationError(RadarError):
    """Missing secret, non-finite threshold or unsupported chain/asset combination."""


class ValidationError(RadarError):
    """Malformed address, unsupported chain or bad user input on an on-demand request."""


class ProviderError(RadarError):
    """An upstream HTTP/RPC source failed or returned a malformed payload."""

    def __init__(self, provider: str, message: str, status: Optional[int] = None) -> None:
        self.provider = provider
        self.status = status
        detail = f"{provider}: {message}"
        if status is not None:
            detail += f" (HTTP {status})"
        super().__init__(detail)


class BalanceProviderError(ProviderError):
    """A chain balance provider failed for a single address lookup."""

    def __init__(self, chain: str, message: str, status: Optional[int] = None) -> None:
        self.chain = chain
        super().__init__(f"{chain} balance provider", message, status)


__all__ = [
    "RadarError",
    "ConfigurationError",
    "ValidationError",
    "ProviderError",
    "BalanceProviderError",
]
