"""
Backrun: 核心模块
双向闪电贷回跑捆绑的构建与多中继提交
"""

from .bundle import Bundle, BundleBuilder, BundleConstructionError, InclusionWindow, TradeDirection
from .config_loader import ConfigLoader, ConfigValidationError, ExecutorConfig, RelayEndpoint, RelayTable
from .executor import BundleExecutor, BundleStatus, ExecutionReport, OutcomeStatus, PrimaryRelayError, RelayOutcome
from .gas_oracle import GasPriceOracle
from .network import AllRPCsFailedError, ChainProvider, FeeData, RPCError
from .relay import RelayClient, RelayError

__all__ = [
    "AllRPCsFailedError",
    "Bundle",
    "BundleBuilder",
    "BundleConstructionError",
    "BundleExecutor",
    "BundleStatus",
    "ChainProvider",
    "ConfigLoader",
    "ConfigValidationError",
    "ExecutionReport",
    "ExecutorConfig",
    "FeeData",
    "GasPriceOracle",
    "InclusionWindow",
    "OutcomeStatus",
    "PrimaryRelayError",
    "RPCError",
    "RelayClient",
    "RelayEndpoint",
    "RelayError",
    "RelayOutcome",
    "RelayTable",
    "TradeDirection",
]
