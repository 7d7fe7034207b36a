"""
Backrun ABI 加载器

从本地 abis 目录加载和缓存合约 ABI，并提供函数签名 / 选择器辅助函数。
使用 orjson 进行 JSON 解析。
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

import orjson
from web3 import Web3


class ABILoadError(Exception):
    """ABI 加载失败时抛出的异常"""
    pass


# 已加载 ABI 的缓存（模块级别）
_abi_cache: Dict[str, List[Dict[str, Any]]] = {}


def _find_abis_directory() -> Path:
    """
    定位 abis 目录

    异常:
        ABILoadError: 如果找不到 abis 目录
    """
    current = Path(__file__).resolve().parent

    search_paths = [
        current.parent / "abis",   # 项目根目录 / abis
        Path.cwd() / "abis",       # 当前工作目录 / abis
    ]

    for path in search_paths:
        if path.exists() and path.is_dir():
            return path

    raise ABILoadError(f"找不到 abis 目录，已搜索: {[str(p) for p in search_paths]}")


def get_abi_path(file_name: str) -> Path:
    """获取 ABI 文件的完整路径（带或不带 .json 扩展名）"""
    if not file_name.endswith(".json"):
        file_name = f"{file_name}.json"
    return _find_abis_directory() / file_name


def load_abi(
    file_name: str,
    use_cache: bool = True,
) -> List[Dict[str, Any]]:
    """
    从 abis 目录加载合约 ABI

    同时支持原始 ABI 数组和 Hardhat/Foundry 产物格式 {"abi": [...]}。

    参数:
        file_name: ABI 文件名（带或不带 .json 扩展名）
        use_cache: 是否使用缓存的 ABI（默认: True）

    异常:
        ABILoadError: 如果文件不存在或包含无效的 JSON

    示例:
        >>> abi = load_abi("BlindBackrunFlashLoan")
    """
    if not file_name.endswith(".json"):
        file_name = f"{file_name}.json"

    if use_cache and file_name in _abi_cache:
        return _abi_cache[file_name]

    abi_path = get_abi_path(file_name)
    if not abi_path.exists():
        raise ABILoadError(
            f"ABI 文件不存在: {abi_path}\n"
            f"请确保 ABI 文件存在于 'abis' 目录中。"
        )

    try:
        with open(abi_path, "rb") as f:
            content = orjson.loads(f.read())
    except orjson.JSONDecodeError as e:
        raise ABILoadError(f"{abi_path} 中的 JSON 格式无效: {e}") from e

    if isinstance(content, dict) and "abi" in content:
        abi = content["abi"]
    elif isinstance(content, list):
        abi = content
    else:
        raise ABILoadError(
            f"{file_name} 中的 ABI 格式意外。"
            f"期望列表或带有 'abi' 键的字典，得到 {type(content).__name__}"
        )

    if use_cache:
        _abi_cache[file_name] = abi

    return abi


def get_function_by_name(
    abi: List[Dict[str, Any]],
    function_name: str,
) -> Optional[Dict[str, Any]]:
    """通过名称在 ABI 中查找函数定义，未找到返回 None"""
    for entry in abi:
        if entry.get("type") == "function" and entry.get("name") == function_name:
            return entry
    return None


def _canonical_type(param: Dict[str, Any]) -> str:
    # tuple 类型展开为 (t1,t2,...) 并保留数组后缀
    param_type = param.get("type", "")
    if param_type.startswith("tuple"):
        inner = ",".join(_canonical_type(c) for c in param.get("components", []))
        return f"({inner}){param_type[len('tuple'):]}"
    return param_type


def get_input_types(abi_entry: Dict[str, Any]) -> List[str]:
    """返回函数输入参数的规范 ABI 类型列表"""
    return [_canonical_type(inp) for inp in abi_entry.get("inputs", [])]


def get_function_signature(abi_entry: Dict[str, Any]) -> str:
    """构建规范函数签名，例如 makeFlashLoan(address[],uint256[],bytes)"""
    return f"{abi_entry.get('name', '')}({','.join(get_input_types(abi_entry))})"


def extract_function_selector(abi_entry: Dict[str, Any]) -> Optional[str]:
    """
    从 ABI 条目中提取 4 字节函数选择器

    返回:
        0x 开头的十六进制选择器，如果不是函数则返回 None
    """
    if abi_entry.get("type") != "function":
        return None
    return Web3.to_hex(Web3.keccak(text=get_function_signature(abi_entry))[:4])
