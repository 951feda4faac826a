#!/usr/bin/env python3
from typing import Optional

import aiohttp

from constants import DEFAULT_ETH_RPC_URL, DEFAULT_HTTP_RETRIES, DEFAULT_HTTP_TIMEOUT, DEFAULT_RETRY_BACKOFF
from errors import ProviderError
from services.http_client import JsonRpcClient
from units import hex_quantity_to_int


class EvmClient:
    """Reads native balances from an Ethereum-compatible JSON-RPC endpoint."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        rpc_url: Optional[str] = None,
        *,
        retries: int = DEFAULT_HTTP_RETRIES,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        backoff: float = DEFAULT_RETRY_BACKOFF,
    ) -> None:
        self._rpc = JsonRpcClient(
            session,
            rpc_url or DEFAULT_ETH_RPC_URL,
            provider='evm-rpc',
            retries=retries,
            timeout=timeout,
            backoff=backoff,
        )

    async def get_balance_wei(self, address: str) -> int:
        """Returns the latest balance of ``address`` in wei."""
        result = await self._rpc.call("eth_getBalance", [address, "latest"])
        try:
            return hex_quantity_to_int(result)
        except ValueError as exc:
            raise ProviderError('evm-rpc', f"malformed eth_getBalance result {result!r}") from exc
