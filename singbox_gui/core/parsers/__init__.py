"""
协议解析器模块
"""
from typing import List

from ..profile import ServerProfile
from ..protocol_parser import ProtocolParserFactory
from .hysteria2_parser import Hysteria2Parser
from .trojan_parser import TrojanParser
from .vless_parser import VLessParser


def create_default_factory() -> ProtocolParserFactory:
    """创建注册了全部内置解析器的工厂"""
    factory = ProtocolParserFactory()
    factory.register_parser(VLessParser())
    factory.register_parser(TrojanParser())
    factory.register_parser(Hysteria2Parser())
    return factory


# 全局解析器工厂实例
protocol_factory = create_default_factory()


def parse_url(link: str) -> ServerProfile:
    """解析分享链接"""
    return protocol_factory.parse_url(link)


def generate_url(profile: ServerProfile) -> str:
    """生成分享链接"""
    return protocol_factory.generate_url(profile)


def is_supported(link: str) -> bool:
    return protocol_factory.is_supported(link)


def parse_links(links: List[str]) -> List[ServerProfile]:
    """批量解析，跳过无法解析的链接"""
    return protocol_factory.parse_links(links)


__all__ = [
    'VLessParser', 'TrojanParser', 'Hysteria2Parser',
    'create_default_factory', 'protocol_factory',
    'parse_url', 'generate_url', 'is_supported', 'parse_links',
]
