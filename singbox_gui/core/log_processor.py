"""
引擎日志处理 - 去除颜色码、识别级别、合并重复日志、检测致命错误
"""
import re
import threading
from datetime import datetime
from typing import List, Optional, Tuple

from .events import LogRecord

ANSI_ESCAPE_RE = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]")

# sing-box 行首格式: "+0800 2024-01-01 12:00:00 INFO ..."
TIMESTAMP_PREFIX_RE = re.compile(
    r"^(?:[+-]\d{4}\s+)?\d{4}-\d{2}-\d{2}[ T]\d{2}:\d{2}:\d{2}(?:\.\d+)?\s*"
)
LEVEL_TOKEN_RE = re.compile(
    r"\b(FATAL|PANIC|ERROR|WARNING|WARN|INFO|DEBUG|TRACE)\b", re.IGNORECASE
)
LEADING_LEVEL_RE = re.compile(
    r"^\[?(FATAL|PANIC|ERROR|WARNING|WARN|INFO|DEBUG|TRACE)\]?(?:\[\d+\])?:?\s*",
    re.IGNORECASE
)

LEVEL_MAP = {
    "FATAL": "fatal",
    "PANIC": "fatal",
    "ERROR": "error",
    "WARNING": "warn",
    "WARN": "warn",
    "INFO": "info",
    "DEBUG": "debug",
    "TRACE": "debug",
}

# 易变片段替换为占位符后再比较是否重复
NORMALIZE_PATTERNS = [
    (re.compile(r"\[\d+ [\d.]+(?:ns|us|µs|ms|s|m|h)\]"), "[#]"),
    (re.compile(r"\b\d+(?:\.\d+)?(?:ns|us|µs|ms|s|m|h)\b"), "<dur>"),
    (re.compile(r":\d{1,5}\b"), ":<port>"),
    (re.compile(r"\b0x[0-9a-fA-F]+\b|\b[0-9a-fA-F]{8,}\b"), "<hex>"),
    (re.compile(r"\b\d+\b"), "<n>"),
]

FATAL_KEYWORDS = ("fatal", "panic", "start service")

# 单个连接的常见网络错误，不影响整体连接状态
ROUTINE_ERROR_RE = re.compile(
    r"i/o timeout|connection refused|no such host|connection reset"
    r"|context deadline exceeded|\beof\b",
    re.IGNORECASE
)

SUMMARY_TEMPLATE = "previous message repeated {count} times"


def strip_ansi(line: str) -> str:
    """去除终端颜色转义序列"""
    return ANSI_ESCAPE_RE.sub("", line)


def classify_line(line: str) -> Tuple[str, str]:
    """
    识别日志级别并去掉行首时间戳和级别标记

    Args:
        line: 已去除颜色码的日志行

    Returns:
        (级别, 消息)
    """
    match = LEVEL_TOKEN_RE.search(line)
    level = LEVEL_MAP[match.group(1).upper()] if match else "info"

    message = TIMESTAMP_PREFIX_RE.sub("", line, count=1)
    message = LEADING_LEVEL_RE.sub("", message, count=1)
    return level, message.strip() or line.strip()


def normalize_message(message: str) -> str:
    """替换耗时、连接 ID、端口、十六进制 ID 和数字"""
    for pattern, placeholder in NORMALIZE_PATTERNS:
        message = pattern.sub(placeholder, message)
    return message


def is_routine_error(message: str) -> bool:
    return ROUTINE_ERROR_RE.search(message) is not None


def is_fatal(level: str, message: str) -> bool:
    """
    判断日志是否为致命错误

    FATAL 级别总是致命；ERROR 级别只有包含致命关键字且不是单连接网络错误
    （超时、拒绝连接、域名解析失败等）时才算致命。
    """
    if level == "fatal":
        return True
    if level == "error":
        if is_routine_error(message):
            return False
        lowered = message.lower()
        return any(keyword in lowered for keyword in FATAL_KEYWORDS)
    return False


def should_forward(count: int) -> bool:
    """重复第 1、10 次以及之后每 100 次转发一次"""
    return count == 1 or count == 10 or count % 100 == 0


class LogProcessor:
    """
    日志处理器

    由两个输出流的读取线程共同调用，内部状态由锁保护。
    重复计数只在一次进程生命周期内有效，每次启动前调用 reset()。
    """

    def __init__(self, source: str = "sing-box"):
        self.source = source
        self._lock = threading.Lock()
        self._last_key: Optional[str] = None
        self._last_level = "info"
        self._repeat_count = 0
        self._last_line = ""

    @property
    def last_line(self) -> str:
        """最近一条非空日志（用于启动失败诊断）"""
        with self._lock:
            return self._last_line

    def reset(self) -> None:
        with self._lock:
            self._last_key = None
            self._last_level = "info"
            self._repeat_count = 0
            self._last_line = ""

    def feed(self, raw_line: str) -> Tuple[List[LogRecord], Optional[str]]:
        """
        处理一行原始输出

        Args:
            raw_line: 进程输出的一行

        Returns:
            (需要转发的日志记录, 致命错误消息或 None)
        """
        line = strip_ansi(raw_line).strip()
        if not line:
            return [], None

        level, message = classify_line(line)
        key = normalize_message(message)
        now = datetime.now()
        records: List[LogRecord] = []

        with self._lock:
            self._last_line = line

            if key == self._last_key:
                self._repeat_count += 1
            else:
                summary = self._summary_locked(now)
                if summary is not None:
                    records.append(summary)
                self._last_key = key
                self._last_level = level
                self._repeat_count = 1

            forwarded = should_forward(self._repeat_count)

        if not forwarded:
            return records, None

        records.append(LogRecord(timestamp=now, level=level, message=message, source=self.source))
        fatal_message = message if is_fatal(level, message) else None
        return records, fatal_message

    def flush(self) -> List[LogRecord]:
        """结束当前重复序列，返回待输出的汇总记录"""
        with self._lock:
            summary = self._summary_locked(datetime.now())
            self._last_key = None
            self._repeat_count = 0
        return [summary] if summary is not None else []

    def _summary_locked(self, now: datetime) -> Optional[LogRecord]:
        if self._repeat_count <= 1:
            return None
        return LogRecord(
            timestamp=now,
            level=self._last_level,
            message=SUMMARY_TEMPLATE.format(count=self._repeat_count - 1),
            source=self.source,
        )
