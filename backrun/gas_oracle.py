"""
Gas Price Oracle

Picks a competitive gas price for backrun transactions:
1. EIP-1559 fee market available -> maxFeePerGas
2. Legacy chain -> gasPrice with a 10% buffer
3. Fee data query failed -> raw gasPrice
"""

import logging

from .network import ChainProvider

logger = logging.getLogger(__name__)

# Legacy buffer, applied as integer percent to keep wei exact
LEGACY_BUFFER_PERCENT = 110


class GasPriceOracle:
    """Estimates a gas price from live network fee data."""

    def __init__(self, provider: ChainProvider, legacy_buffer_percent: int = LEGACY_BUFFER_PERCENT):
        self.provider = provider
        self.legacy_buffer_percent = legacy_buffer_percent

    async def get_optimal_gas_price(self) -> int:
        """
        Get optimal gas price by checking current network conditions.

        Only a total provider outage escapes this method: the raw legacy
        lookup in the fallback path is not guarded.
        """
        try:
            fee_data = await self.provider.get_fee_data()
            if fee_data.is_eip1559:
                return fee_data.max_fee_per_gas

            gas_price = fee_data.gas_price
            if gas_price is None:
                gas_price = await self.provider.get_gas_price()
            return gas_price * self.legacy_buffer_percent // 100
        except Exception as e:
            logger.warning(f"⚠️ Error getting gas price, using fallback: {e}")
            return await self.provider.get_gas_price()
