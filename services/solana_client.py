#!/usr/bin/env python3
from typing import Optional

import aiohttp

from constants import DEFAULT_HTTP_RETRIES, DEFAULT_HTTP_TIMEOUT, DEFAULT_RETRY_BACKOFF, DEFAULT_SOL_RPC_URL
from errors import ProviderError
from services.http_client import JsonRpcClient


class SolanaClient:
    """Reads SOL balances through the Solana JSON-RPC API."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        rpc_url: Optional[str] = None,
        *,
        commitment: str = "confirmed",
        retries: int = DEFAULT_HTTP_RETRIES,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        backoff: float = DEFAULT_RETRY_BACKOFF,
    ) -> None:
        self._commitment = commitment
        self._rpc = JsonRpcClient(
            session,
            rpc_url or DEFAULT_SOL_RPC_URL,
            provider='solana-rpc',
            retries=retries,
            timeout=timeout,
            backoff=backoff,
        )

    async def get_balance_lamports(self, address: str) -> int:
        result = await self._rpc.call("getBalance", [address, {"commitment": self._commitment}])
        value = result.get('value') if isinstance(result, dict) else None
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ProviderError('solana-rpc', f"malformed getBalance result {result!r}")
        return value
