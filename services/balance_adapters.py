"""Per-chain balance adapters: validate an address, read smallest units, convert exactly."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Mapping, Pattern, Union

from analysis.models import CanonicalBalance
from constants import CHAIN_CONFIG, SUPPORTED_CHAINS
from errors import BalanceProviderError, ProviderError, ValidationError
from services.bitcoin_client import BitcoinClient
from services.evm_client import EvmClient
from services.solana_client import SolanaClient
from services.toncenter_client import TonCenterClient
from units import to_decimal_amount

logger = logging.getLogger(__name__)

_BASE58 = "1-9A-HJ-NP-Za-km-z"

ADDRESS_PATTERNS: Dict[str, Pattern[str]] = {
    'evm': re.compile(r"^0x[0-9a-fA-F]{40}$"),
    'btc': re.compile(rf"^(?:[13][{_BASE58}]{{25,34}}|bc1[02-9ac-hj-np-z]{{11,71}})$"),
    'sol': re.compile(rf"^[{_BASE58}]{{32,44}}$"),
    'ton': re.compile(r"^(?:-?\d+:[0-9a-fA-F]{64}|[A-Za-z0-9_\-+/]{48})$"),
}

RawBalanceFetcher = Callable[[str], Awaitable[Union[int, str]]]


def normalize_chain(chain: str) -> str:
    normalized = (chain or '').strip().lower()
    if normalized not in SUPPORTED_CHAINS:
        raise ValidationError(
            f"Unsupported chain '{chain}'. Supported chains: {', '.join(SUPPORTED_CHAINS)}"
        )
    return normalized


@dataclass(frozen=True)
class BalanceAdapter:
    """Reads the native-asset balance of one chain."""
    chain: str
    symbol: str
    decimals: int
    fetch_raw: RawBalanceFetcher
    address_pattern: Pattern[str]

    def validate_address(self, address: str) -> str:
        candidate = (address or '').strip()
        if self.chain == 'btc' and candidate[:3].lower() == 'bc1':
            # bech32 is case-insensitive but must not mix cases.
            if candidate != candidate.lower() and candidate != candidate.upper():
                raise ValidationError(f"Malformed {self.symbol} address")
            candidate = candidate.lower()
        if not self.address_pattern.match(candidate):
            raise ValidationError(f"Malformed {self.symbol} address")
        return candidate

    async def fetch_balance(self, address: str) -> CanonicalBalance:
        address = self.validate_address(address)
        try:
            raw = await self.fetch_raw(address)
        except ProviderError as exc:
            raise BalanceProviderError(self.chain, str(exc)) from exc

        try:
            amount = to_decimal_amount(raw, self.decimals)
        except ValueError as exc:
            raise BalanceProviderError(self.chain, f"unparseable balance {raw!r}") from exc

        logger.debug("Fetched %s balance %s for %s", self.chain, amount, address)
        return CanonicalBalance(chain=self.chain, symbol=self.symbol, amount=amount)


def _make_adapter(chain: str, fetch_raw: RawBalanceFetcher) -> BalanceAdapter:
    chain_info = CHAIN_CONFIG[chain]
    return BalanceAdapter(
        chain=chain,
        symbol=str(chain_info['nativeSymbol']),
        decimals=int(chain_info['decimals']),
        fetch_raw=fetch_raw,
        address_pattern=ADDRESS_PATTERNS[chain],
    )


def build_balance_adapters(
    *,
    evm_client: EvmClient,
    bitcoin_client: BitcoinClient,
    solana_client: SolanaClient,
    ton_client: TonCenterClient,
) -> Dict[str, BalanceAdapter]:
    return {
        'evm': _make_adapter('evm', evm_client.get_balance_wei),
        'btc': _make_adapter('btc', bitcoin_client.get_balance_sats),
        'sol': _make_adapter('sol', solana_client.get_balance_lamports),
        'ton': _make_adapter('ton', ton_client.get_balance_nanotons),
    }


def get_adapter(adapters: Mapping[str, BalanceAdapter], chain: str) -> BalanceAdapter:
    normalized = normalize_chain(chain)
    adapter = adapters.get(normalized)
    if adapter is None:
        raise ValidationError(f"No balance adapter configured for chain '{normalized}'")
    return adapter
