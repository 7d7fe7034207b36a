"""
Tests for gas_oracle.py
"""
import pytest

from backrun.gas_oracle import GasPriceOracle
from backrun.network import AllRPCsFailedError, FeeData


class TestGasPriceOracle:
    """Tests for the three-tier gas price fallback."""

    @pytest.mark.asyncio
    async def test_returns_max_fee_when_fee_market_available(self, mock_provider):
        oracle = GasPriceOracle(mock_provider)

        assert await oracle.get_optimal_gas_price() == 21_500_000_000
        mock_provider.get_gas_price.assert_not_called()

    @pytest.mark.asyncio
    async def test_legacy_price_gets_ten_percent_buffer(self, mock_provider):
        mock_provider.get_fee_data.return_value = FeeData(gas_price=20_000_000_000)
        oracle = GasPriceOracle(mock_provider)

        assert await oracle.get_optimal_gas_price() == 22_000_000_000

    @pytest.mark.asyncio
    async def test_legacy_buffer_rounds_down_to_whole_wei(self, mock_provider):
        mock_provider.get_fee_data.return_value = FeeData(gas_price=15)
        oracle = GasPriceOracle(mock_provider)

        assert await oracle.get_optimal_gas_price() == 16

    @pytest.mark.asyncio
    async def test_missing_priority_fee_is_treated_as_legacy(self, mock_provider):
        mock_provider.get_fee_data.return_value = FeeData(
            gas_price=10_000_000_000, max_fee_per_gas=30_000_000_000
        )
        oracle = GasPriceOracle(mock_provider)

        assert await oracle.get_optimal_gas_price() == 11_000_000_000

    @pytest.mark.asyncio
    async def test_legacy_price_fetched_when_fee_data_lacks_it(self, mock_provider):
        mock_provider.get_fee_data.return_value = FeeData()
        mock_provider.get_gas_price.return_value = 1_000
        oracle = GasPriceOracle(mock_provider)

        assert await oracle.get_optimal_gas_price() == 1_100

    @pytest.mark.asyncio
    async def test_fee_data_error_falls_back_to_raw_gas_price(self, mock_provider):
        mock_provider.get_fee_data.side_effect = AllRPCsFailedError("fee data down")
        oracle = GasPriceOracle(mock_provider)

        assert await oracle.get_optimal_gas_price() == 20_000_000_000

    @pytest.mark.asyncio
    async def test_total_outage_propagates(self, mock_provider):
        mock_provider.get_fee_data.side_effect = AllRPCsFailedError("fee data down")
        mock_provider.get_gas_price.side_effect = AllRPCsFailedError("gas price down")
        oracle = GasPriceOracle(mock_provider)

        with pytest.raises(AllRPCsFailedError, match="gas price down"):
            await oracle.get_optimal_gas_price()
