"""
错误报告 - 把核心异常和运行期故障转换为带建议的用户消息

服务在后台线程（日志读取、进程监视、规则集下载）中上报错误，
历史记录和回调列表都由锁保护。
"""
import logging
import re
import threading
import traceback
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from .exceptions import CoreError


class ErrorSeverity(Enum):
    """错误严重程度"""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def log_level(self) -> int:
        return _LOG_LEVELS[self]


_LOG_LEVELS = {
    ErrorSeverity.INFO: logging.INFO,
    ErrorSeverity.WARNING: logging.WARNING,
    ErrorSeverity.ERROR: logging.ERROR,
    ErrorSeverity.CRITICAL: logging.CRITICAL,
}


class ErrorCategory(Enum):
    """错误来源"""
    PROTOCOL_PARSING = "protocol_parsing"
    CONFIG_COMPILE = "config_compile"
    ENGINE_PROCESS = "engine_process"
    RESOURCE = "resource"
    CONFIG_PERSISTENCE = "config_persistence"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ErrorDefinition:
    """预定义错误：严重程度、默认消息和解决建议"""
    severity: ErrorSeverity
    message: str
    suggestions: Tuple[str, ...] = ()


UNKNOWN_ERROR = ErrorDefinition(ErrorSeverity.ERROR, "未知错误")

ERROR_DEFINITIONS: Dict[str, ErrorDefinition] = {
    "protocol_parsing_invalid_link": ErrorDefinition(
        ErrorSeverity.ERROR, "无效的协议链接格式",
        ("检查链接格式是否正确", "确认链接未被截断"),
    ),
    "protocol_parsing_unsupported_scheme": ErrorDefinition(
        ErrorSeverity.ERROR, "不支持的协议类型",
        ("目前支持 vless://、trojan://、hysteria2:// (hy2://)",),
    ),
    "protocol_parsing_missing_credential": ErrorDefinition(
        ErrorSeverity.ERROR, "协议链接缺少 UUID 或密码",
        ("检查链接中 @ 之前的认证信息", "联系服务提供商获取完整链接"),
    ),
    "config_compile_no_profile": ErrorDefinition(
        ErrorSeverity.ERROR, "没有选择服务器配置",
        ("在服务器列表中选择一个服务器",),
    ),
    "config_compile_invalid": ErrorDefinition(
        ErrorSeverity.ERROR, "服务器配置无效",
        ("检查传输层设置（路径、Host、服务名）", "检查端口和 TLS 设置"),
    ),
    "engine_process_start_failed": ErrorDefinition(
        ErrorSeverity.CRITICAL, "sing-box 启动失败",
        ("检查 sing-box 可执行文件是否存在", "确认本地监听端口没有被其他程序使用", "TUN 模式需要管理员权限"),
    ),
    "engine_process_unexpected_exit": ErrorDefinition(
        ErrorSeverity.CRITICAL, "sing-box 进程意外终止",
        ("查看日志中的最后一条错误", "重新连接"),
    ),
    "engine_shutdown_timeout": ErrorDefinition(
        ErrorSeverity.WARNING, "sing-box 未在限定时间内退出，已强制终止",
    ),
    "resource_missing": ErrorDefinition(
        ErrorSeverity.ERROR, "缺少运行所需的资源文件",
        ("重新安装应用", "更新规则集文件"),
    ),
    "resource_download_failed": ErrorDefinition(
        ErrorSeverity.WARNING, "规则集下载失败",
        ("检查网络是否可用，或在设置中配置规则集镜像地址", "稍后重试"),
    ),
    "config_persistence_file_corrupted": ErrorDefinition(
        ErrorSeverity.ERROR, "配置文件已损坏",
        ("已尝试从 .backup 文件恢复", "删除损坏的文件后重新导入服务器"),
    ),
}


# 引擎输出中的常见错误，按顺序匹配第一条
ENGINE_ERROR_HINTS: List[Tuple[Any, str]] = [
    (re.compile(r"address already in use|bind: .*in use", re.IGNORECASE),
     "端口已被占用：请更换其他端口或关闭占用端口的程序"),
    (re.compile(r"permission denied|operation not permitted|access denied", re.IGNORECASE),
     "权限不足：TUN 模式需要管理员权限"),
    (re.compile(r"connection refused", re.IGNORECASE),
     "连接被拒绝：无法连接到代理服务器，请检查服务器地址和端口"),
    (re.compile(r"i/o timeout|timed out|deadline exceeded", re.IGNORECASE),
     "连接超时：服务器响应超时，请检查网络连接或更换服务器"),
    (re.compile(r"no such host|dns.*fail", re.IGNORECASE),
     "DNS 解析失败：无法解析服务器域名，请检查 DNS 设置"),
    (re.compile(r"x509|certificate|tls: ", re.IGNORECASE),
     "TLS 证书错误：服务器证书验证失败，请检查 TLS 设置"),
    (re.compile(r"authentication failed|auth fail", re.IGNORECASE),
     "认证失败：UUID 或密码错误，请检查服务器配置"),
    (re.compile(r"decode config|invalid config|config error|unknown field|json: ", re.IGNORECASE),
     "配置错误：sing-box 配置文件格式不正确"),
]

EXIT_CODE_HINTS = {
    1: "请检查配置文件和服务器设置",
    2: "sing-box 配置文件格式错误",
    126: "sing-box 可执行文件没有执行权限",
    127: "找不到 sing-box 可执行文件",
}


def translate_engine_error(text: str) -> Optional[str]:
    """
    把引擎错误输出翻译为用户提示

    Args:
        text: 引擎日志或异常消息

    Returns:
        匹配到的提示，未识别时返回 None
    """
    for pattern, hint in ENGINE_ERROR_HINTS:
        if pattern.search(text):
            return hint
    return None


def explain_engine_line(line: str) -> str:
    """在原始日志前加上提示：'提示 (原始日志)'，未识别时原样返回"""
    hint = translate_engine_error(line)
    return f"{hint} ({line})" if hint else line


def describe_engine_exit(exit_code: int, last_line: str = "") -> str:
    """
    描述启动宽限期内的退出

    优先使用最后一条日志的提示，其次按退出码给出提示。
    """
    message = f"sing-box 启动失败 (退出码: {exit_code})"
    if last_line:
        return f"{message}: {explain_engine_line(last_line)}"
    hint = EXIT_CODE_HINTS.get(exit_code)
    return f"{message}: {hint}" if hint else message


@dataclass
class ErrorInfo:
    """一次错误上报"""
    category: ErrorCategory
    severity: ErrorSeverity
    code: str
    message: str
    details: Optional[str] = None
    context: Optional[Dict[str, Any]] = None
    suggestions: List[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "severity": self.severity.value,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
            "context": self.context,
            "suggestions": list(self.suggestions),
        }

    def to_user_message(self) -> str:
        """
        生成展示给用户的多行文本

        Returns:
            "[级别] 消息"，后面依次是详细信息和编号的解决建议
        """
        lines = [f"[{self.severity.value.upper()}] {self.message}"]
        if self.details:
            lines.append(f"详细信息: {self.details}")
        if self.suggestions:
            lines.append("建议解决方案:")
            lines.extend(f"{n}. {text}" for n, text in enumerate(self.suggestions, 1))
        return "\n".join(lines)


def _describe_exception(exception: Exception, details: Optional[str], with_stack: bool) -> str:
    text = f"异常信息: {type(exception).__name__}: {exception}"
    if details:
        text = f"{details}\n{text}"
    if with_stack:
        text += f"\n堆栈跟踪:\n{traceback.format_exc()}"
    return text


class ErrorHandler:
    """错误处理器"""

    def __init__(self, max_history: int = 1000):
        """
        Args:
            max_history: 保留的最近错误数量
        """
        self.logger = logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._history: Deque[ErrorInfo] = deque(maxlen=max_history)
        self._callbacks: Dict[ErrorCategory, List[Callable[[ErrorInfo], None]]] = {}

    def register_error_callback(self, category: ErrorCategory, callback: Callable[[ErrorInfo], None]):
        """注册某个类别的错误回调"""
        with self._lock:
            self._callbacks.setdefault(category, []).append(callback)

    def handle_error(self,
                     category: ErrorCategory,
                     code: str,
                     message: Optional[str] = None,
                     details: Optional[str] = None,
                     context: Optional[Dict[str, Any]] = None,
                     exception: Optional[Exception] = None) -> ErrorInfo:
        """
        上报错误：写日志、记入历史、通知回调

        Args:
            category: 错误类别
            code: 错误代码，未预定义的代码按 ERROR 级别处理
            message: 覆盖预定义的默认消息
            details: 错误详细信息
            context: 附加上下文
            exception: 引起错误的异常，追加到详细信息中

        Returns:
            错误信息对象
        """
        definition = ERROR_DEFINITIONS.get(code, UNKNOWN_ERROR)

        if exception is not None:
            details = _describe_exception(exception, details, self.logger.isEnabledFor(logging.DEBUG))

        info = ErrorInfo(
            category=category,
            severity=definition.severity,
            code=code,
            message=message or definition.message,
            details=details,
            context=context,
            suggestions=list(definition.suggestions),
        )

        text = f"[{category.value}] {code}: {info.message}"
        if details:
            text += f" | Details: {details}"
        self.logger.log(info.severity.log_level, text)

        with self._lock:
            self._history.append(info)
            callbacks = list(self._callbacks.get(category, ()))

        for callback in callbacks:
            try:
                callback(info)
            except Exception as e:
                self.logger.error(f"Error in error callback: {e}")

        return info

    def handle_exception(self,
                         category: ErrorCategory,
                         exception: Exception,
                         context: Optional[Dict[str, Any]] = None) -> ErrorInfo:
        """
        上报异常

        CoreError 自带错误代码和消息；其他异常的代码为 "<类别>_<异常类型小写>"。
        """
        if isinstance(exception, CoreError):
            return self.handle_error(category, exception.code,
                                     message=exception.message,
                                     details=exception.details,
                                     context=context)

        type_name = type(exception).__name__
        return self.handle_error(category, f"{category.value}_{type_name.lower()}",
                                 message=f"{type_name}: {exception}",
                                 context=context,
                                 exception=exception)

    def get_error_history(self,
                          category: Optional[ErrorCategory] = None,
                          severity: Optional[ErrorSeverity] = None,
                          limit: Optional[int] = None) -> List[ErrorInfo]:
        """
        按类别、严重程度过滤历史记录

        Args:
            limit: 只返回最近的若干条

        Returns:
            按时间顺序排列的错误列表
        """
        with self._lock:
            history = list(self._history)

        result = [
            info for info in history
            if (category is None or info.category == category)
            and (severity is None or info.severity == severity)
        ]
        if limit:
            result = result[-limit:]
        return result

    def clear_error_history(self):
        with self._lock:
            self._history.clear()


# 进程内共享的错误处理器
global_error_handler = ErrorHandler()


def handle_error(category: ErrorCategory,
                 code: str,
                 message: Optional[str] = None,
                 details: Optional[str] = None,
                 context: Optional[Dict[str, Any]] = None,
                 exception: Optional[Exception] = None) -> ErrorInfo:
    """通过全局错误处理器上报错误"""
    return global_error_handler.handle_error(category, code, message, details, context, exception)


def handle_exception(category: ErrorCategory,
                     exception: Exception,
                     context: Optional[Dict[str, Any]] = None) -> ErrorInfo:
    """通过全局错误处理器上报异常"""
    return global_error_handler.handle_exception(category, exception, context)
