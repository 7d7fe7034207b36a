"""
Backrun: 工具模块
辅助函数和工具
"""

from .abi_loader import (
    ABILoadError,
    extract_function_selector,
    get_abi_path,
    get_function_by_name,
    get_function_signature,
    load_abi,
)

__all__ = [
    "ABILoadError",
    "extract_function_selector",
    "get_abi_path",
    "get_function_by_name",
    "get_function_signature",
    "load_abi",
]
