"""
Bundle Builder

Builds the two backrun bundles for one victim transaction, one per trade
direction. Only one of them can execute: the flash loan contract reverts
for the wrong direction.

Nonce policy: both transactions are signed with the SAME nonce, read once
per build. The bundles are mutually exclusive on-chain, so at most one
of them can ever consume it.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from eth_abi import encode
from eth_account.signers.local import LocalAccount
from web3 import Web3

from .config_loader import ExecutorConfig
from .flashloan import FlashLoanContract
from .gas_oracle import GasPriceOracle
from .network import ChainProvider

logger = logging.getLogger(__name__)

BUNDLE_VERSION = "beta-1"
DEFAULT_GAS_LIMIT = 400000
DEFAULT_BLOCKS_TO_TRY = 3
TRADE_PARAM_TYPES = ["address", "address", "uint256"]

_TX_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


class BundleConstructionError(Exception):
    """Encoding, population or signing failed; nothing may be sent."""
    pass


@dataclass(frozen=True)
class TradeDirection:
    """Ordered pair route plus the share of profit the contract keeps."""
    first_pair: str
    second_pair: str
    percentage_to_keep: int

    def reversed(self) -> "TradeDirection":
        return TradeDirection(self.second_pair, self.first_pair, self.percentage_to_keep)

    def encode_params(self) -> bytes:
        """ABI-encode (address, address, uint256) for the contract's userData."""
        return encode(
            TRADE_PARAM_TYPES,
            [
                Web3.to_checksum_address(self.first_pair),
                Web3.to_checksum_address(self.second_pair),
                int(self.percentage_to_keep),
            ],
        )

    @property
    def label(self) -> str:
        return f"{self.first_pair[:10]}->{self.second_pair[:10]}"


@dataclass(frozen=True)
class InclusionWindow:
    """Block range [block, max_block] for which a bundle stays eligible."""
    block: int
    max_block: int

    @classmethod
    def from_head(cls, head_block: int, blocks_to_try: int = DEFAULT_BLOCKS_TO_TRY) -> "InclusionWindow":
        block = head_block + 1
        return cls(block=block, max_block=block + blocks_to_try)

    @property
    def blocks_to_try(self) -> int:
        return self.max_block - self.block

    def to_dict(self) -> Dict[str, str]:
        return {"block": hex(self.block), "maxBlock": hex(self.max_block)}


@dataclass(frozen=True)
class Bundle:
    """A victim-hash reference followed by one signed backrun transaction."""
    victim_tx_hash: str
    signed_tx: str
    window: InclusionWindow
    direction: Optional[TradeDirection] = None
    version: str = BUNDLE_VERSION

    @property
    def body(self) -> List[Dict[str, Any]]:
        # target first, backrun second
        return [
            {"hash": self.victim_tx_hash},
            {"tx": self.signed_tx, "canRevert": False},
        ]

    @property
    def backrun_tx_hash(self) -> str:
        return Web3.to_hex(Web3.keccak(hexstr=self.signed_tx))

    def to_dict(self) -> Dict[str, Any]:
        """mev_sendBundle wire format."""
        return {
            "version": self.version,
            "inclusion": self.window.to_dict(),
            "body": self.body,
        }


def _get_raw_tx(signed) -> Optional[bytes]:
    """Extract raw transaction bytes (eth-account version-compatible)."""
    if hasattr(signed, "raw_transaction"):
        return signed.raw_transaction
    elif hasattr(signed, "rawTransaction"):
        return signed.rawTransaction
    return None


class BundleBuilder:
    """
    Builds and signs both direction bundles for one victim transaction.

    Chain reads (head block, nonce, gas price) happen once, before either
    transaction is populated.
    """

    def __init__(
        self,
        provider: ChainProvider,
        gas_oracle: GasPriceOracle,
        contract: FlashLoanContract,
        account: LocalAccount,
        config: ExecutorConfig,
    ):
        self.provider = provider
        self.gas_oracle = gas_oracle
        self.contract = contract
        self.account = account
        self.config = config

        self.wnative_address = Web3.to_checksum_address(config.wnative_address)
        self.loan_amount_wei = Web3.to_wei(config.loan_amount_ether, "ether")
        self.gas_limit = config.gas_limit or DEFAULT_GAS_LIMIT
        self.blocks_to_try = config.blocks_to_try

    def _validate_inputs(self, pair_a: str, pair_b: str, victim_tx_hash: str) -> None:
        for pair in (pair_a, pair_b):
            if not Web3.is_address(pair):
                raise BundleConstructionError(f"Invalid pair address: {pair!r}")
        if pair_a.lower() == pair_b.lower():
            raise BundleConstructionError(f"Both directions use the same pair: {pair_a}")
        if not isinstance(victim_tx_hash, str) or not _TX_HASH_RE.match(victim_tx_hash):
            raise BundleConstructionError(f"Invalid transaction hash: {victim_tx_hash!r}")

    def _sign_direction(self, direction: TradeDirection, tx_options: Dict[str, Any]) -> str:
        try:
            tx = self.contract.populate_transaction(
                [self.wnative_address],
                [self.loan_amount_wei],
                direction.encode_params(),
                tx_options,
            )
            raw_tx = _get_raw_tx(self.account.sign_transaction(tx))
        except Exception as e:
            raise BundleConstructionError(
                f"Failed to build transaction for {direction.label}: {e}"
            ) from e

        if raw_tx is None:
            raise BundleConstructionError("Could not extract raw transaction")
        return Web3.to_hex(raw_tx)

    async def build_bundles(
        self,
        pair_a: str,
        pair_b: str,
        victim_tx_hash: str,
    ) -> Tuple[Bundle, Bundle]:
        """
        Build both backrun bundles for victim_tx_hash.

        Returns (bundle_a, bundle_b): bundle_a routes pair_a -> pair_b,
        bundle_b routes pair_b -> pair_a. Both share one nonce.
        """
        self._validate_inputs(pair_a, pair_b, victim_tx_hash)

        head_block = await self.provider.get_block_number()
        logger.info(f"🔢 Current block number: {head_block}")
        nonce = await self.provider.get_nonce(self.account.address)
        gas_price = await self.gas_oracle.get_optimal_gas_price()
        logger.info("🏗️ Building bundles")

        tx_options = {
            "gas": self.gas_limit,
            "gasPrice": gas_price,
            "nonce": nonce,
            "chainId": self.config.chain_id,
        }

        first = TradeDirection(pair_a, pair_b, self.config.percentage_to_keep)
        second = first.reversed()
        window = InclusionWindow.from_head(head_block, self.blocks_to_try)

        bundle_a = Bundle(
            victim_tx_hash=victim_tx_hash,
            signed_tx=self._sign_direction(first, tx_options),
            window=window,
            direction=first,
        )
        bundle_b = Bundle(
            victim_tx_hash=victim_tx_hash,
            signed_tx=self._sign_direction(second, tx_options),
            window=window,
            direction=second,
        )

        logger.info(
            f"📦 Submitting bundles for block: {window.block} through block: {window.max_block}"
        )
        return bundle_a, bundle_b
