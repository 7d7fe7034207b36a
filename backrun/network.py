"""
Backrun 链提供者

异步区块链读取层，提供以下功能:
- RPC 故障转移支持
- 速率限制的指数退避
- 区块号、待处理 nonce、费用市场数据和 Legacy Gas 价格查询
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, TypeVar

import aiohttp
from web3 import AsyncWeb3
from web3.exceptions import Web3Exception
from web3.providers import AsyncHTTPProvider

from .config_loader import ExecutorConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ethers v5 getFeeData 使用的固定优先费（1.5 gwei）
DEFAULT_PRIORITY_FEE = 1_500_000_000


class RPCError(Exception):
    """RPC 相关错误的基类"""
    pass


class AllRPCsFailedError(RPCError):
    """当所有 RPC 端点都失败时抛出"""
    pass


@dataclass
class FeeData:
    """
    费用数据快照

    链不支持 EIP-1559 时 max_fee_per_gas 和 max_priority_fee_per_gas 为 None。
    """

    gas_price: Optional[int] = None
    last_base_fee_per_gas: Optional[int] = None
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None

    @property
    def is_eip1559(self) -> bool:
        return self.max_fee_per_gas is not None and self.max_priority_fee_per_gas is not None


@dataclass
class RPCHealth:
    """单个 RPC 端点的健康指标"""

    url: str
    is_healthy: bool = True
    consecutive_failures: int = 0
    total_requests: int = 0
    avg_latency_ms: float = 0.0

    def record_success(self, latency_ms: float) -> None:
        self.is_healthy = True
        self.consecutive_failures = 0
        self.total_requests += 1
        if self.avg_latency_ms == 0:
            self.avg_latency_ms = latency_ms
        else:
            self.avg_latency_ms = 0.8 * self.avg_latency_ms + 0.2 * latency_ms

    def record_failure(self) -> None:
        self.consecutive_failures += 1
        self.total_requests += 1
        # 连续失败3次后标记为不健康
        if self.consecutive_failures >= 3:
            self.is_healthy = False


class ChainProvider:
    """
    异步链数据提供者

    功能特性:
    - 连接错误或 5xx 时自动切换 RPC 端点
    - HTTP 429 / 速率限制时使用指数退避
    - 所有尝试失败后抛出 AllRPCsFailedError

    使用示例:
        >>> config = ConfigLoader().get_executor_config()  # backrun.config_loader
        >>> async with ChainProvider(config) as provider:
        ...     head = await provider.get_block_number()
    """

    def __init__(self, config: ExecutorConfig) -> None:
        self.config = config
        self.chain_id = config.chain_id

        self._rpc_urls: List[str] = list(config.rpc_urls)
        self._current_rpc_index = 0
        self._rpc_health: Dict[str, RPCHealth] = {
            url: RPCHealth(url=url) for url in self._rpc_urls
        }

        self._web3: Optional[AsyncWeb3] = None

        # 重试配置
        self._max_retries = config.max_retries
        self._base_delay = 0.5
        self._max_delay = 30.0
        self._timeout = aiohttp.ClientTimeout(total=config.rpc_timeout)

        self._lock = asyncio.Lock()

    @property
    def current_rpc_url(self) -> str:
        return self._rpc_urls[self._current_rpc_index]

    @property
    def w3(self) -> AsyncWeb3:
        """获取 Web3 实例。如果未连接则抛出异常"""
        if self._web3 is None:
            raise RPCError("链提供者未连接。请先调用 connect() 方法。")
        return self._web3

    async def __aenter__(self) -> "ChainProvider":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()

    async def connect(self) -> None:
        """创建 Web3 实例并校验链 ID"""
        self._create_web3_instance()

        chain_id = await self._execute_with_retry(
            lambda: self.w3.eth.chain_id, "chain_id"
        )

        if chain_id != self.chain_id:
            logger.warning(f"链 ID 不匹配: 期望 {self.chain_id}，实际 {chain_id}")
        logger.info(f"已连接到链 {chain_id}，使用 {self.current_rpc_url}")

    async def disconnect(self) -> None:
        provider = self._web3.provider if self._web3 is not None else None
        disconnect = getattr(provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()
        self._web3 = None
        logger.info("已断开链连接")

    def _create_web3_instance(self) -> None:
        """使用当前 RPC URL 创建 Web3 实例"""
        provider = AsyncHTTPProvider(
            endpoint_uri=self.current_rpc_url,
            request_kwargs={"timeout": self._timeout},
        )
        self._web3 = AsyncWeb3(provider)

    async def _switch_to_next_rpc(self) -> None:
        """
        切换到下一个可用的 RPC 端点，优先选择健康的节点
        """
        async with self._lock:
            original_index = self._current_rpc_index

            for _ in range(len(self._rpc_urls)):
                self._current_rpc_index = (self._current_rpc_index + 1) % len(self._rpc_urls)
                if self._rpc_health[self.current_rpc_url].is_healthy:
                    logger.info(f"切换 RPC 到: {self.current_rpc_url}")
                    self._create_web3_instance()
                    return

            logger.warning("所有 RPC 都标记为不健康，正在重置健康状态")
            for health in self._rpc_health.values():
                health.is_healthy = True
                health.consecutive_failures = 0

            self._current_rpc_index = (original_index + 1) % len(self._rpc_urls)
            self._create_web3_instance()

    def _backoff(self, attempt: int) -> float:
        return min(self._base_delay * (2 ** attempt), self._max_delay)

    async def _execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str = "operation",
    ) -> T:
        """
        带重试逻辑的异步操作执行

        参数:
            operation: 要执行的异步可调用对象
            operation_name: 用于日志记录的操作名称

        异常:
            RPCError: 不可重试的客户端错误
            AllRPCsFailedError: 如果所有重试都用尽
        """
        last_error: Optional[Exception] = None
        total_attempts = max(1, self._max_retries * len(self._rpc_urls))

        for attempt in range(total_attempts):
            try:
                start_time = time.perf_counter()
                result = await operation()
                latency_ms = (time.perf_counter() - start_time) * 1000
                self._rpc_health[self.current_rpc_url].record_success(latency_ms)
                return result

            except aiohttp.ClientResponseError as e:
                last_error = e
                if e.status == 429:
                    delay = self._backoff(attempt)
                    logger.warning(f"{operation_name} 被限速，等待 {delay:.2f} 秒后重试")
                    await asyncio.sleep(delay)
                    continue
                elif e.status >= 500:
                    self._rpc_health[self.current_rpc_url].record_failure()
                    await self._switch_to_next_rpc()
                    continue
                else:
                    raise RPCError(f"HTTP {e.status}: {e.message}") from e

            except (aiohttp.ClientError, asyncio.TimeoutError, ConnectionError, OSError) as e:
                last_error = e
                logger.warning(
                    f"{operation_name} 连接错误: {e}，"
                    f"切换 RPC（尝试 {attempt + 1}/{total_attempts}）"
                )
                self._rpc_health[self.current_rpc_url].record_failure()
                await self._switch_to_next_rpc()
                continue

            except Web3Exception as e:
                last_error = e
                error_msg = str(e).lower()
                if "429" in error_msg or "rate" in error_msg or "limit" in error_msg:
                    delay = self._backoff(attempt)
                    logger.warning(f"{operation_name} RPC 速率限制，等待 {delay:.2f} 秒后重试")
                    await asyncio.sleep(delay)
                    continue
                self._rpc_health[self.current_rpc_url].record_failure()
                await self._switch_to_next_rpc()
                continue

        raise AllRPCsFailedError(
            f"{operation_name} 的所有 {total_attempts} 次尝试都失败了。"
            f"最后的错误: {last_error}"
        )

    # =====================================================
    # 公共 API - 区块链读取操作
    # =====================================================

    async def get_block_number(self) -> int:
        """获取当前区块号"""
        async def _fetch():
            return await self.w3.eth.block_number

        return int(await self._execute_with_retry(_fetch, "get_block_number"))

    async def get_nonce(self, address: str) -> int:
        """
        获取地址的待处理交易计数（nonce）

        使用 "pending" 区块标签，包含内存池中尚未打包的交易。
        """
        async def _fetch():
            checksum_addr = self.w3.to_checksum_address(address)
            return await self.w3.eth.get_transaction_count(checksum_addr, "pending")

        return int(await self._execute_with_retry(_fetch, "get_nonce"))

    async def get_gas_price(self) -> int:
        """获取 Legacy Gas 价格（wei）"""
        async def _fetch():
            return await self.w3.eth.gas_price

        return int(await self._execute_with_retry(_fetch, "get_gas_price"))

    async def get_fee_data(self) -> FeeData:
        """
        获取费用市场数据

        最新区块带有 baseFeePerGas 时:
            max_fee_per_gas = 2 * baseFee + 1.5 gwei
        区块与 Legacy Gas 价格并发查询。
        Legacy Gas 价格查询失败时 gas_price 为 None，不影响费用市场字段。
        """
        async def _fetch_block():
            return await self.w3.eth.get_block("latest")

        async def _gas_price_or_none() -> Optional[int]:
            try:
                return await self.get_gas_price()
            except RPCError as e:
                logger.debug(f"Legacy Gas 价格不可用: {e}")
                return None

        block, gas_price = await asyncio.gather(
            self._execute_with_retry(_fetch_block, "get_fee_data"),
            _gas_price_or_none(),
        )

        fee_data = FeeData(gas_price=gas_price)
        base_fee = block.get("baseFeePerGas")
        if base_fee:
            fee_data.last_base_fee_per_gas = int(base_fee)
            fee_data.max_priority_fee_per_gas = DEFAULT_PRIORITY_FEE
            fee_data.max_fee_per_gas = int(base_fee) * 2 + DEFAULT_PRIORITY_FEE
        return fee_data

    # =====================================================
    # 健康监控
    # =====================================================

    def get_rpc_health(self) -> Dict[str, RPCHealth]:
        return self._rpc_health.copy()
