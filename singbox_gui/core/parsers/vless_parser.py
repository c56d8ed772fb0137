"""
VLESS协议解析器
"""
from typing import List

from ..profile import Protocol, ServerProfile
from ..protocol_parser import ProtocolParser, profile_id_for_link
from .common import (
    build_link, parse_security, parse_transport, security_params,
    split_link, transport_params,
)


class VLessParser(ProtocolParser):
    """VLESS协议解析器"""

    def get_protocol_name(self) -> str:
        return "vless"

    def get_supported_schemes(self) -> List[str]:
        return ["vless://"]

    def parse_link(self, link: str) -> ServerProfile:
        """
        解析VLESS链接

        链接格式: vless://uuid@server:port?type=ws&security=tls&...#name

        Args:
            link: vless://格式的链接

        Returns:
            ServerProfile 对象
        """
        parts = split_link(link, self.get_protocol_name())
        network, transport_kwargs = parse_transport(link, parts.params)
        security, security_kwargs = parse_security(link, parts.params)

        return ServerProfile(
            id=profile_id_for_link(link),
            name=parts.name,
            protocol=Protocol.VLESS,
            address=parts.address,
            port=parts.port,
            uuid=parts.credential,
            encryption=parts.params.get("encryption") or "none",
            flow=parts.params.get("flow", ""),
            network=network,
            security=security,
            **transport_kwargs,
            **security_kwargs
        )

    def generate_link(self, profile: ServerProfile) -> str:
        params = [("encryption", profile.encryption or "none")]
        if profile.flow:
            params.append(("flow", profile.flow))

        transport = transport_params(profile)
        params.extend(transport)
        has_host = any(key == "host" for key, _ in transport)
        params.extend(security_params(profile, has_host))

        return build_link("vless", profile, params)
