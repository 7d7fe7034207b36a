#!/usr/bin/env python3
"""
捆绑提交日志模块 (Submission Journal)

功能：
- 将每个中继调用结果记录到 CSV 文件
- 支持后续中继可靠性分析和审计
- 线程安全的文件追加操作

使用方法：
    journal = SubmissionJournal()
    executor.add_outcome_hook(journal)
"""

import csv
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .executor import RelayOutcome

logger = logging.getLogger(__name__)


# ============================================
# 配置
# ============================================

LOGS_DIR = Path(__file__).resolve().parent.parent / "logs"

SUBMISSION_HISTORY_FILE = "submission_history.csv"

CSV_HEADERS = [
    "Timestamp",
    "Victim_Tx",
    "Backrun_Tx",
    "Direction",
    "Relay",
    "Role",
    "Status",
    "Latency_Ms",
    "Error",
]


@dataclass
class SubmissionRecord:
    """单次中继调用记录"""
    timestamp: str
    victim_tx: str
    backrun_tx: str
    direction: str
    relay: str
    role: str
    status: str
    latency_ms: float = 0.0
    error: str = ""

    @classmethod
    def from_outcome(cls, outcome: RelayOutcome) -> "SubmissionRecord":
        bundle = outcome.bundle
        return cls(
            timestamp=datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC"),
            victim_tx=bundle.victim_tx_hash,
            backrun_tx=bundle.backrun_tx_hash,
            direction=bundle.direction.label if bundle.direction else str(outcome.bundle_index),
            relay=outcome.relay.name,
            role=outcome.role.value,
            status=outcome.status.value,
            latency_ms=outcome.latency_ms,
            error=str(outcome.error or outcome.rpc_error or ""),
        )

    def to_row(self) -> list:
        """转换为 CSV 行"""
        return [
            self.timestamp,
            self.victim_tx,
            self.backrun_tx,
            self.direction,
            self.relay,
            self.role,
            self.status,
            f"{self.latency_ms:.1f}",
            self.error,
        ]


class SubmissionJournal:
    """
    中继提交日志管理器

    可直接作为 BundleExecutor 的结果回调使用。
    """

    def __init__(self, log_dir: Optional[Path] = None):
        """
        参数：
            log_dir: 日志目录路径（默认为项目根目录下的 logs/）
        """
        self.log_dir = log_dir or LOGS_DIR
        self.file_path = self.log_dir / SUBMISSION_HISTORY_FILE
        self._lock = threading.Lock()

        self.log_dir.mkdir(parents=True, exist_ok=True)
        self._ensure_file()

    def _ensure_file(self):
        """确保 CSV 文件存在并有正确的表头"""
        if not self.file_path.exists() or self.file_path.stat().st_size == 0:
            with open(self.file_path, "w", newline="", encoding="utf-8") as f:
                csv.writer(f).writerow(CSV_HEADERS)
            logger.info(f"📄 创建提交日志: {self.file_path}")

    def log_outcome(self, outcome: RelayOutcome) -> SubmissionRecord:
        """记录一次中继调用结果"""
        record = SubmissionRecord.from_outcome(outcome)

        with self._lock:
            with open(self.file_path, "a", newline="", encoding="utf-8") as f:
                csv.writer(f).writerow(record.to_row())

        return record

    __call__ = log_outcome

    def get_stats(self) -> dict:
        """
        按中继汇总提交统计

        返回：
            {"total": n, "accepted": n, "failed": n, "by_relay": {name: {"accepted": n, "failed": n}}}
        """
        stats = {"total": 0, "accepted": 0, "failed": 0, "by_relay": {}}

        with self._lock:
            with open(self.file_path, "r", newline="", encoding="utf-8") as f:
                for row in csv.DictReader(f):
                    status = row.get("Status", "")
                    if status not in ("accepted", "failed"):
                        continue
                    stats["total"] += 1
                    stats[status] += 1
                    relay = stats["by_relay"].setdefault(
                        row.get("Relay", ""), {"accepted": 0, "failed": 0}
                    )
                    relay[status] += 1

        return stats
