"""
协议解析器基础接口和工厂类
"""
import logging
import uuid as uuid_lib
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from .exceptions import CoreError, LinkParseError, UnsupportedSchemeError
from .profile import ServerProfile

logger = logging.getLogger(__name__)


def profile_id_for_link(link: str) -> str:
    """由链接内容得到稳定的配置 ID，同一链接重复导入得到相同 ID"""
    return str(uuid_lib.uuid5(uuid_lib.NAMESPACE_URL, link.strip()))


class ProtocolParser(ABC):
    """协议解析器基础接口"""

    @abstractmethod
    def parse_link(self, link: str) -> ServerProfile:
        """
        解析协议链接为 ServerProfile

        Args:
            link: 协议链接字符串

        Returns:
            ServerProfile 对象

        Raises:
            MissingCredentialError: 缺少 UUID 或密码
            LinkParseError: 其他格式错误
        """

    @abstractmethod
    def generate_link(self, profile: ServerProfile) -> str:
        """
        将 ServerProfile 生成为分享链接

        Args:
            profile: 服务器配置

        Returns:
            分享链接
        """

    @abstractmethod
    def get_protocol_name(self) -> str:
        """获取协议名称"""

    @abstractmethod
    def get_supported_schemes(self) -> List[str]:
        """
        获取支持的 URL scheme 列表

        Returns:
            支持的 scheme 列表，如 ['hysteria2://', 'hy2://']
        """

    def validate_link(self, link: str) -> bool:
        """检查链接是否以本解析器支持的 scheme 开头"""
        link = link.strip().lower()
        return any(link.startswith(scheme) for scheme in self.get_supported_schemes())


class ProtocolParserFactory:
    """协议解析器工厂类"""

    def __init__(self):
        self._parsers: Dict[str, ProtocolParser] = {}
        self._scheme_to_parser: Dict[str, ProtocolParser] = {}

    def register_parser(self, parser: ProtocolParser) -> None:
        """
        注册协议解析器

        Args:
            parser: 协议解析器实例
        """
        self._parsers[parser.get_protocol_name()] = parser

        for scheme in parser.get_supported_schemes():
            self._scheme_to_parser[scheme] = parser

    def get_parser(self, protocol_name: str) -> Optional[ProtocolParser]:
        """根据协议名称获取解析器"""
        return self._parsers.get(protocol_name)

    def get_parser_by_link(self, link: str) -> Optional[ProtocolParser]:
        """根据链接 scheme 获取解析器，无法识别返回 None"""
        for parser in self._parsers.values():
            if parser.validate_link(link):
                return parser
        return None

    def is_supported(self, link: str) -> bool:
        """检查链接是否为支持的协议"""
        return self.get_parser_by_link(link) is not None

    def parse_url(self, link: str) -> ServerProfile:
        """
        自动识别协议并解析链接

        Args:
            link: 协议链接字符串

        Returns:
            ServerProfile 对象

        Raises:
            UnsupportedSchemeError: scheme 不在支持列表中
            MissingCredentialError: 缺少认证信息
            LinkParseError: 其他解析错误，携带原始链接
        """
        parser = self.get_parser_by_link(link)
        if parser is None:
            scheme = link.strip().split("://", 1)[0] if "://" in link else link.strip()
            raise UnsupportedSchemeError(link, scheme)

        try:
            return parser.parse_link(link)
        except CoreError:
            raise
        except (ValueError, IndexError, KeyError) as e:
            raise LinkParseError(link, str(e)) from e

    def generate_url(self, profile: ServerProfile) -> str:
        """
        生成分享链接

        Raises:
            UnsupportedSchemeError: 没有对应协议的解析器
        """
        parser = self.get_parser(profile.protocol.value)
        if parser is None:
            raise UnsupportedSchemeError(profile.name, profile.protocol.value)
        return parser.generate_link(profile)

    def parse_links(self, links: List[str]) -> List[ServerProfile]:
        """
        批量解析链接，跳过空行和解析失败的链接

        Args:
            links: 链接列表

        Returns:
            成功解析的 ServerProfile 列表
        """
        profiles = []
        for link in links:
            if not link.strip():
                continue
            try:
                profiles.append(self.parse_url(link))
            except LinkParseError as e:
                logger.warning(f"Skipping share link: {e.reason}")
        return profiles

    def get_supported_protocols(self) -> List[str]:
        """获取所有支持的协议名称列表"""
        return list(self._parsers.keys())

    def get_supported_schemes(self) -> List[str]:
        """获取所有支持的 URL scheme 列表"""
        return list(self._scheme_to_parser.keys())
