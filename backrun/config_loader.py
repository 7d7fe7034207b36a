"""
Backrun 配置加载器

负责加载和验证执行器配置以及环境变量中的敏感信息。
将静态JSON配置（中继端点表、合约地址、捆绑参数）与环境变量结合，
实现安全的凭证管理。
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from web3 import Web3


class ConfigValidationError(Exception):
    """配置验证失败时抛出的异常"""
    pass


@dataclass(frozen=True)
class RelayEndpoint:
    """单个中继 / 区块构建者端点"""

    name: str
    url: str


@dataclass
class RelayTable:
    """
    中继端点表

    第一个配置的端点为主中继，其余端点的前 alternate_count 个作为备用中继。
    """

    primary: RelayEndpoint
    alternates: List[RelayEndpoint] = field(default_factory=list)

    @classmethod
    def from_endpoints(
        cls,
        endpoints: List[RelayEndpoint],
        alternate_count: int = 3,
    ) -> "RelayTable":
        """
        从有序端点列表构建中继表

        参数:
            endpoints: 有序端点列表，第一个为主中继
            alternate_count: 使用的备用中继数量
        """
        if not endpoints:
            raise ConfigValidationError("至少需要配置一个中继端点")
        if alternate_count < 0:
            raise ConfigValidationError(
                f"alternate_relay_count 不能为负数: {alternate_count}"
            )
        return cls(
            primary=endpoints[0],
            alternates=list(endpoints[1:1 + alternate_count]),
        )

    def __iter__(self):
        yield self.primary
        yield from self.alternates

    def __len__(self) -> int:
        return 1 + len(self.alternates)


@dataclass
class ExecutorConfig:
    """捆绑执行器的完整配置"""

    chain_id: int
    rpc_urls: List[str]
    wnative_address: str
    flashloan_contract: str
    relays: RelayTable

    # 捆绑参数
    percentage_to_keep: int = 7000
    blocks_to_try: int = 3
    gas_limit: int = 400000
    loan_amount_ether: int = 10

    # 敏感信息（从环境变量加载）
    private_key: Optional[str] = None
    flashbots_auth_key: Optional[str] = None

    # 运行时设置
    rpc_timeout: int = 10
    relay_timeout: int = 10
    max_retries: int = 3
    debug_mode: bool = False

    @property
    def auth_key(self) -> Optional[str]:
        """中继身份签名使用的私钥，未单独配置时回退到交易签名私钥"""
        return self.flashbots_auth_key or self.private_key


ZERO_ADDRESS = "0x" + "0" * 40


def _is_address(value: Any) -> bool:
    return isinstance(value, str) and Web3.is_address(value)


def _to_int(name: str, value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigValidationError(f"{name} 必须为整数: {value!r}")


def _env_int(name: str, default: Any) -> int:
    # 已设置但为空的环境变量视为未设置
    return _to_int(name, os.getenv(name) or default)


class ConfigLoader:
    """
    执行器配置管理器

    从 JSON 文件加载中继表和捆绑参数，并与环境变量中的敏感信息结合。

    使用示例:
        >>> loader = ConfigLoader()
        >>> config = loader.get_executor_config()
        >>> print(config.relays.primary.name)  # MEV-Share
    """

    def __init__(
        self,
        config_path: Optional[str] = None,
        env_path: Optional[str] = None
    ) -> None:
        """
        初始化配置加载器

        参数:
            config_path: relays.json 文件路径，默认为 config/relays.json
            env_path: .env 文件路径，默认为项目根目录的 .env
        """
        self._project_root = self._find_project_root()

        env_file = Path(env_path) if env_path else self._project_root / ".env"
        if env_file.exists():
            load_dotenv(env_file)

        config_file = Path(config_path) if config_path else self._project_root / "config" / "relays.json"
        self._raw_config = self._load_json_config(config_file)
        self._config_cache: Optional[ExecutorConfig] = None

    def _find_project_root(self) -> Path:
        """
        查找项目根目录

        通过查找 config 文件夹或 .git 来定位
        """
        current = Path(__file__).resolve().parent

        for _ in range(5):
            if (current / "config").exists() or (current / ".git").exists():
                return current
            current = current.parent

        return Path(__file__).resolve().parent.parent

    def _load_json_config(self, path: Path) -> Dict[str, Any]:
        """
        加载 JSON 配置文件

        异常:
            ConfigValidationError: 文件不存在或 JSON 格式无效
        """
        if not path.exists():
            raise ConfigValidationError(f"配置文件不存在: {path}")

        try:
            with open(path, "r", encoding="utf-8") as f:
                config = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigValidationError(f"{path} 中的 JSON 格式无效: {e}")

        if not isinstance(config, dict):
            raise ConfigValidationError("配置必须是一个 JSON 对象")

        return config

    def _validate(self, config: Dict[str, Any]) -> None:
        """
        验证原始配置

        异常:
            ConfigValidationError: 缺少必需字段或字段无效
        """
        required_fields = ["chain_id", "rpc_urls", "wnative_address", "relays"]
        for field_name in required_fields:
            if field_name not in config:
                raise ConfigValidationError(f"配置中缺少必需字段 '{field_name}'")

        if not isinstance(config["rpc_urls"], list) or len(config["rpc_urls"]) == 0:
            raise ConfigValidationError("必须至少配置一个 RPC URL")

        if not isinstance(config["relays"], list) or len(config["relays"]) == 0:
            raise ConfigValidationError("必须至少配置一个中继端点")

        for relay in config["relays"]:
            if not isinstance(relay, dict) or not relay.get("name") or not relay.get("url"):
                raise ConfigValidationError(f"中继端点必须包含 name 和 url: {relay}")

        if not _is_address(config["wnative_address"]):
            raise ConfigValidationError(
                f"wnative_address 无效: {config['wnative_address']}"
            )

        if _to_int("blocks_to_try", config.get("blocks_to_try", 3)) <= 0:
            raise ConfigValidationError("blocks_to_try 必须为正数")

    def _get_rpc_override(self) -> Optional[List[str]]:
        """从环境变量 RPC_URL_OVERRIDE 获取 RPC URL 覆盖配置"""
        override = os.getenv("RPC_URL_OVERRIDE")
        if override:
            return [url.strip() for url in override.split(",") if url.strip()]
        return None

    def get_executor_config(self) -> ExecutorConfig:
        """
        获取完整的执行器配置

        将静态 JSON 配置与环境变量中的敏感信息合并，结果会被缓存。

        异常:
            ConfigValidationError: 配置无效
        """
        if self._config_cache is not None:
            return self._config_cache

        raw = self._raw_config
        self._validate(raw)

        flashloan_contract = os.getenv("FLASHLOAN_CONTRACT") or raw.get("flashloan_contract", "")
        if not _is_address(flashloan_contract) or flashloan_contract.lower() == ZERO_ADDRESS:
            raise ConfigValidationError(f"flashloan_contract 无效: {flashloan_contract!r}")

        alternate_count = _env_int("ALTERNATE_RELAY_COUNT", raw.get("alternate_relay_count", 3))
        endpoints = [RelayEndpoint(name=r["name"], url=r["url"]) for r in raw["relays"]]

        config = ExecutorConfig(
            chain_id=_to_int("chain_id", raw["chain_id"]),
            rpc_urls=self._get_rpc_override() or list(raw["rpc_urls"]),
            wnative_address=raw["wnative_address"],
            flashloan_contract=flashloan_contract,
            relays=RelayTable.from_endpoints(endpoints, alternate_count),
            percentage_to_keep=_env_int("PERCENTAGE_TO_KEEP", raw.get("percentage_to_keep", 7000)),
            blocks_to_try=_to_int("blocks_to_try", raw.get("blocks_to_try", 3)),
            gas_limit=_to_int("gas_limit", raw.get("gas_limit", 400000)),
            loan_amount_ether=_to_int("loan_amount_ether", raw.get("loan_amount_ether", 10)),
            private_key=os.getenv("PRIVATE_KEY"),
            flashbots_auth_key=os.getenv("FLASHBOTS_AUTH_KEY"),
            rpc_timeout=_env_int("RPC_TIMEOUT", 10),
            relay_timeout=_env_int("RELAY_TIMEOUT", 10),
            max_retries=_env_int("MAX_RETRIES", 3),
            debug_mode=os.getenv("DEBUG_MODE", "false").lower() == "true",
        )

        self._config_cache = config
        return config

