"""
Pytest configuration and fixtures for Backrun Bundle Executor tests.
"""
import pytest
from unittest.mock import AsyncMock
from eth_account import Account

from backrun.bundle import BundleBuilder
from backrun.config_loader import ExecutorConfig, RelayEndpoint, RelayTable
from backrun.flashloan import FlashLoanContract
from backrun.gas_oracle import GasPriceOracle
from backrun.network import ChainProvider, FeeData


SIGNER_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
AUTH_KEY = "0x8da4ef21b864d2cc526dbdb2a120bd2874c36c9d0a1fb7f8c63d7f7a8b41de8f"

WETH = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"
FLASHLOAN_CONTRACT = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
PAIR_A = "0xB4e16d0168e52d35CaCD2c6185b44281Ec28C9Dc"
PAIR_B = "0x397FF1542f962076d0BFE58eA045FfA2d347ACa0"
VICTIM_TX = "0x" + "ab" * 32


@pytest.fixture
def relay_table():
    """Primary plus three alternates."""
    return RelayTable(
        primary=RelayEndpoint("MEV-Share", "https://primary.example"),
        alternates=[
            RelayEndpoint("Flashbots", "https://alt1.example"),
            RelayEndpoint("BloXroute Max Profit", "https://alt2.example"),
            RelayEndpoint("BloXroute Regulated", "https://alt3.example"),
        ],
    )


@pytest.fixture
def executor_config(relay_table):
    """Create a default ExecutorConfig for testing."""
    return ExecutorConfig(
        chain_id=1,
        rpc_urls=["http://127.0.0.1:8545"],
        wnative_address=WETH,
        flashloan_contract=FLASHLOAN_CONTRACT,
        relays=relay_table,
        percentage_to_keep=7000,
        blocks_to_try=3,
        gas_limit=400000,
        loan_amount_ether=10,
        private_key=SIGNER_KEY,
        flashbots_auth_key=AUTH_KEY,
    )


@pytest.fixture
def signer():
    return Account.from_key(SIGNER_KEY)


@pytest.fixture
def auth_account():
    return Account.from_key(AUTH_KEY)


@pytest.fixture
def mock_provider():
    """ChainProvider double: head 1000, pending nonce 7, EIP-1559 fee data."""
    provider = AsyncMock(spec=ChainProvider)
    provider.get_block_number.return_value = 1000
    provider.get_nonce.return_value = 7
    provider.get_gas_price.return_value = 20_000_000_000
    provider.get_fee_data.return_value = FeeData(
        gas_price=20_000_000_000,
        last_base_fee_per_gas=10_000_000_000,
        max_fee_per_gas=21_500_000_000,
        max_priority_fee_per_gas=1_500_000_000,
    )
    return provider


@pytest.fixture
def flashloan_contract():
    return FlashLoanContract(FLASHLOAN_CONTRACT)


@pytest.fixture
def bundle_builder(mock_provider, flashloan_contract, signer, executor_config):
    return BundleBuilder(
        provider=mock_provider,
        gas_oracle=GasPriceOracle(mock_provider),
        contract=flashloan_contract,
        account=signer,
        config=executor_config,
    )
