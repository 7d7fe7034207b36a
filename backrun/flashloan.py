"""
Flash loan contract call encoder.

Builds unsigned transactions for the backrun contract's loan entry point
straight from its ABI, without a contract round-trip to the node.
"""

from typing import Any, Dict, List, Optional, Sequence

from eth_abi import encode
from web3 import Web3

from utils.abi_loader import (
    ABILoadError,
    extract_function_selector,
    get_function_by_name,
    get_input_types,
    load_abi,
)

FLASHLOAN_ABI_NAME = "BlindBackrunFlashLoan"
FLASHLOAN_ENTRY_POINT = "makeFlashLoan"


class FlashLoanContract:
    """Thin ABI-driven wrapper around the flash loan entry point."""

    def __init__(
        self,
        address: str,
        abi: Optional[List[Dict[str, Any]]] = None,
        function_name: str = FLASHLOAN_ENTRY_POINT,
    ):
        self.address = Web3.to_checksum_address(address)
        self.abi = abi if abi is not None else load_abi(FLASHLOAN_ABI_NAME)

        entry = get_function_by_name(self.abi, function_name)
        if entry is None:
            raise ABILoadError(f"Function '{function_name}' not found in flash loan ABI")

        self.function_name = function_name
        self.input_types = get_input_types(entry)
        self.selector = bytes.fromhex(extract_function_selector(entry)[2:])

    def encode_make_flash_loan(
        self,
        tokens: Sequence[str],
        amounts: Sequence[int],
        user_data: bytes,
    ) -> bytes:
        """Encode calldata for makeFlashLoan(tokens, amounts, userData)."""
        args = [
            [Web3.to_checksum_address(t) for t in tokens],
            [int(a) for a in amounts],
            user_data,
        ]
        return self.selector + encode(self.input_types, args)

    def populate_transaction(
        self,
        tokens: Sequence[str],
        amounts: Sequence[int],
        user_data: bytes,
        tx_options: Dict[str, Any],
    ) -> Dict[str, Any]:
        """
        Build an unsigned transaction dict for makeFlashLoan.

        tx_options carries gas, gasPrice, nonce and chainId. The dict is
        copied, never mutated, so one options object can back both
        trade directions.
        """
        tx = dict(tx_options)
        tx.update({
            "to": self.address,
            "value": 0,
            "data": Web3.to_hex(self.encode_make_flash_loan(tokens, amounts, user_data)),
        })
        return tx
