"""
Hysteria2协议解析器
"""
from typing import List

from ..exceptions import LinkParseError
from ..profile import Hysteria2Settings, Protocol, Security, ServerProfile
from ..protocol_parser import ProtocolParser, profile_id_for_link
from .common import build_link, parse_security, split_link, tls_params


class Hysteria2Parser(ProtocolParser):
    """Hysteria2协议解析器"""

    def get_protocol_name(self) -> str:
        return "hysteria2"

    def get_supported_schemes(self) -> List[str]:
        return ["hysteria2://", "hy2://"]

    def parse_link(self, link: str) -> ServerProfile:
        """
        解析Hysteria2链接

        链接格式: hysteria2://password@server:port?sni=...&obfs=salamander&obfs-password=...#name
        安全层固定为 TLS，忽略 security 参数。

        Args:
            link: hysteria2:// 或 hy2:// 格式的链接

        Returns:
            ServerProfile 对象
        """
        parts = split_link(link, self.get_protocol_name())
        params = parts.params
        _, security_kwargs = parse_security(link, params, forced=Security.TLS)

        settings = Hysteria2Settings(
            up_mbps=self._parse_mbps(link, params, "upmbps"),
            down_mbps=self._parse_mbps(link, params, "downmbps"),
            obfs_type=params.get("obfs", ""),
            obfs_password=params.get("obfs-password", ""),
        )

        return ServerProfile(
            id=profile_id_for_link(link),
            name=parts.name,
            protocol=Protocol.HYSTERIA2,
            address=parts.address,
            port=parts.port,
            password=parts.credential,
            security=Security.TLS,
            hysteria2=settings,
            **security_kwargs
        )

    @staticmethod
    def _parse_mbps(link: str, params: dict, key: str) -> int:
        # 兼容 "100 mbps" 这类带单位的写法
        value = params.get(key, "").strip().lower()
        if value.endswith("mbps"):
            value = value[:-4].strip()
        if not value:
            return 0
        if not value.isdigit():
            raise LinkParseError(link, f"{key} 必须是整数: {params[key]}")
        return int(value)

    def generate_link(self, profile: ServerProfile) -> str:
        params = tls_params(profile, has_host_param=False, insecure_key="insecure")

        settings = profile.hysteria2
        if settings is not None:
            if settings.up_mbps:
                params.append(("upmbps", str(settings.up_mbps)))
            if settings.down_mbps:
                params.append(("downmbps", str(settings.down_mbps)))
            if settings.obfs_type:
                params.append(("obfs", settings.obfs_type))
            if settings.obfs_password:
                params.append(("obfs-password", settings.obfs_password))

        return build_link("hysteria2", profile, params)
