"""
核心异常定义
"""
from typing import Optional


class CoreError(Exception):
    """核心模块异常基类"""

    code = "core_error"

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ConfigInvalidError(CoreError):
    """配置内容无效（传输层字段格式错误等）"""

    code = "config_compile_invalid"


class NoProfileSelectedError(CoreError):
    """没有可用的已选服务器"""

    code = "config_compile_no_profile"

    def __init__(self, message: str = "没有选择服务器配置，请先选择一个服务器"):
        super().__init__(message)


class LinkParseError(CoreError):
    """分享链接解析失败，携带原始输入便于诊断"""

    code = "protocol_parsing_invalid_link"

    def __init__(self, raw_link: str, reason: str):
        super().__init__(f"链接解析失败: {reason}", details=raw_link)
        self.raw_link = raw_link
        self.reason = reason


class UnsupportedSchemeError(LinkParseError):
    """不支持的协议 scheme"""

    code = "protocol_parsing_unsupported_scheme"

    def __init__(self, raw_link: str, scheme: str):
        super().__init__(raw_link, f"不支持的协议: {scheme}")
        self.scheme = scheme


class MissingCredentialError(LinkParseError):
    """链接缺少 UUID 或密码"""

    code = "protocol_parsing_missing_credential"

    def __init__(self, raw_link: str, protocol: str):
        super().__init__(raw_link, f"{protocol} 链接缺少认证信息")
        self.protocol = protocol


class StartupFailedError(CoreError):
    """引擎在启动宽限期内退出或无法启动"""

    code = "engine_process_start_failed"

    def __init__(self, exit_code: Optional[int], last_log_line: str = "", message: Optional[str] = None):
        if message is None and exit_code is None:
            message = f"sing-box 启动失败: {last_log_line or '进程未能启动'}"
        elif message is None:
            message = f"sing-box 启动失败 (退出码: {exit_code})"
        super().__init__(message, details=last_log_line or None)
        self.exit_code = exit_code
        self.last_log_line = last_log_line


class ResourceError(CoreError):
    """资源文件缺失或下载失败"""

    code = "resource_missing"
