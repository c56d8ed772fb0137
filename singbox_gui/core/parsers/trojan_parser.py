"""
Trojan协议解析器
"""
from typing import List

from ..profile import Protocol, ServerProfile
from ..protocol_parser import ProtocolParser, profile_id_for_link
from .common import (
    build_link, parse_security, parse_transport, security_params,
    split_link, transport_params,
)


class TrojanParser(ProtocolParser):
    """Trojan协议解析器"""

    def get_protocol_name(self) -> str:
        return "trojan"

    def get_supported_schemes(self) -> List[str]:
        return ["trojan://"]

    def parse_link(self, link: str) -> ServerProfile:
        """
        解析Trojan链接

        Trojan链接格式: trojan://password@server:port?params#remark
        密码经过 URL 编码，解析时还原。
        """
        parts = split_link(link, self.get_protocol_name())
        network, transport_kwargs = parse_transport(link, parts.params)
        security, security_kwargs = parse_security(link, parts.params)

        return ServerProfile(
            id=profile_id_for_link(link),
            name=parts.name,
            protocol=Protocol.TROJAN,
            address=parts.address,
            port=parts.port,
            password=parts.credential,
            network=network,
            security=security,
            **transport_kwargs,
            **security_kwargs
        )

    def generate_link(self, profile: ServerProfile) -> str:
        params = transport_params(profile)
        has_host = any(key == "host" for key, _ in params)
        params.extend(security_params(profile, has_host))
        return build_link("trojan", profile, params)
