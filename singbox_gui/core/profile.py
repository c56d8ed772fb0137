"""
ServerProfile 数据模型 - 服务器配置数据结构

协议、传输层和安全层各自构成一个判别字段，只有被选中的分支才携带对应的子配置。
"""
import uuid as uuid_lib
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class Protocol(Enum):
    """代理协议"""
    VLESS = "vless"
    TROJAN = "trojan"
    HYSTERIA2 = "hysteria2"


class Network(Enum):
    """传输层类型"""
    TCP = "tcp"
    WS = "ws"
    GRPC = "grpc"
    HTTP = "http"


class Security(Enum):
    """安全层类型"""
    NONE = "none"
    TLS = "tls"
    REALITY = "reality"


@dataclass
class TlsSettings:
    """TLS 设置"""
    server_name: str = ""
    allow_insecure: bool = False
    alpn: List[str] = field(default_factory=list)
    fingerprint: str = ""


@dataclass
class RealitySettings:
    """Reality 设置"""
    public_key: str = ""
    short_id: str = ""


@dataclass
class WsSettings:
    """WebSocket 设置"""
    path: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    max_early_data: int = 0
    early_data_header_name: str = ""

    @property
    def host(self) -> str:
        return self.headers.get("Host", "")


@dataclass
class GrpcSettings:
    """gRPC 设置"""
    service_name: str = ""
    multi_mode: bool = False


@dataclass
class HttpSettings:
    """HTTP/2 设置"""
    host: List[str] = field(default_factory=list)
    path: str = ""
    method: str = ""


@dataclass
class Hysteria2Settings:
    """Hysteria2 带宽与混淆设置"""
    up_mbps: int = 0
    down_mbps: int = 0
    obfs_type: str = ""
    obfs_password: str = ""


@dataclass
class ServerProfile:
    """服务器配置数据模型"""
    name: str
    protocol: Protocol
    address: str
    port: int
    id: str = field(default_factory=lambda: str(uuid_lib.uuid4()))

    # 认证信息：VLESS 使用 uuid，Trojan/Hysteria2 使用 password
    uuid: str = ""
    password: str = ""

    # VLESS 特定字段
    encryption: str = "none"
    flow: str = ""

    network: Network = Network.TCP
    security: Security = Security.NONE

    tls: Optional[TlsSettings] = None
    reality: Optional[RealitySettings] = None

    ws: Optional[WsSettings] = None
    grpc: Optional[GrpcSettings] = None
    http: Optional[HttpSettings] = None

    hysteria2: Optional[Hysteria2Settings] = None

    def __post_init__(self):
        # Hysteria2 固定使用 TLS，且没有可选传输层
        if self.protocol == Protocol.HYSTERIA2:
            self.security = Security.TLS
            if self.hysteria2 is None:
                self.hysteria2 = Hysteria2Settings()

        if self.security in (Security.TLS, Security.REALITY):
            if self.tls is None:
                self.tls = TlsSettings()
        else:
            self.tls = None
        if self.security != Security.REALITY:
            self.reality = None

        if self.network == Network.WS and self.ws is None:
            self.ws = WsSettings()
        elif self.network == Network.GRPC and self.grpc is None:
            self.grpc = GrpcSettings()
        elif self.network == Network.HTTP and self.http is None:
            self.http = HttpSettings()

    @property
    def credential(self) -> str:
        """当前协议使用的认证信息"""
        if self.protocol == Protocol.VLESS:
            return self.uuid
        return self.password

    @property
    def display_address(self) -> str:
        """地址:端口 显示文本（IPv6 加方括号）"""
        if ":" in self.address:
            return f"[{self.address}]:{self.port}"
        return f"{self.address}:{self.port}"

    def to_dict(self) -> Dict[str, Any]:
        """转换为持久化字典（camelCase 字段名）"""
        data: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "protocol": self.protocol.value,
            "address": self.address,
            "port": self.port,
            "network": self.network.value,
            "security": self.security.value,
        }

        if self.protocol == Protocol.VLESS:
            data["uuid"] = self.uuid
            data["encryption"] = self.encryption
            if self.flow:
                data["flow"] = self.flow
        else:
            data["password"] = self.password

        if self.tls is not None:
            data["tlsSettings"] = {
                "serverName": self.tls.server_name,
                "allowInsecure": self.tls.allow_insecure,
                "alpn": list(self.tls.alpn),
                "fingerprint": self.tls.fingerprint,
            }
        if self.reality is not None:
            data["realitySettings"] = {
                "publicKey": self.reality.public_key,
                "shortId": self.reality.short_id,
            }

        if self.network == Network.WS and self.ws is not None:
            data["wsSettings"] = {
                "path": self.ws.path,
                "headers": dict(self.ws.headers),
                "maxEarlyData": self.ws.max_early_data,
                "earlyDataHeaderName": self.ws.early_data_header_name,
            }
        elif self.network == Network.GRPC and self.grpc is not None:
            data["grpcSettings"] = {
                "serviceName": self.grpc.service_name,
                "multiMode": self.grpc.multi_mode,
            }
        elif self.network == Network.HTTP and self.http is not None:
            data["httpSettings"] = {
                "host": list(self.http.host),
                "path": self.http.path,
                "method": self.http.method,
            }

        if self.hysteria2 is not None:
            data["hysteria2Settings"] = {
                "upMbps": self.hysteria2.up_mbps,
                "downMbps": self.hysteria2.down_mbps,
                "obfs": {
                    "type": self.hysteria2.obfs_type,
                    "password": self.hysteria2.obfs_password,
                },
            }

        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServerProfile":
        """
        从持久化字典创建实例

        Args:
            data: to_dict() 生成的字典

        Raises:
            ValueError: 协议、传输层或安全层取值未知
            KeyError: 缺少必要字段
        """
        tls = None
        if data.get("tlsSettings"):
            tls_data = data["tlsSettings"]
            tls = TlsSettings(
                server_name=tls_data.get("serverName") or "",
                allow_insecure=bool(tls_data.get("allowInsecure", False)),
                alpn=list(tls_data.get("alpn") or []),
                fingerprint=tls_data.get("fingerprint") or "",
            )

        reality = None
        if data.get("realitySettings"):
            reality_data = data["realitySettings"]
            reality = RealitySettings(
                public_key=reality_data.get("publicKey") or "",
                short_id=reality_data.get("shortId") or "",
            )

        ws = None
        if data.get("wsSettings"):
            ws_data = data["wsSettings"]
            ws = WsSettings(
                path=ws_data.get("path") or "",
                headers=dict(ws_data.get("headers") or {}),
                max_early_data=int(ws_data.get("maxEarlyData") or 0),
                early_data_header_name=ws_data.get("earlyDataHeaderName") or "",
            )

        grpc = None
        if data.get("grpcSettings"):
            grpc_data = data["grpcSettings"]
            grpc = GrpcSettings(
                service_name=grpc_data.get("serviceName") or "",
                multi_mode=bool(grpc_data.get("multiMode", False)),
            )

        http = None
        if data.get("httpSettings"):
            http_data = data["httpSettings"]
            http = HttpSettings(
                host=list(http_data.get("host") or []),
                path=http_data.get("path") or "",
                method=http_data.get("method") or "",
            )

        hysteria2 = None
        if data.get("hysteria2Settings"):
            hy2_data = data["hysteria2Settings"]
            obfs = hy2_data.get("obfs") or {}
            hysteria2 = Hysteria2Settings(
                up_mbps=int(hy2_data.get("upMbps") or 0),
                down_mbps=int(hy2_data.get("downMbps") or 0),
                obfs_type=obfs.get("type") or "",
                obfs_password=obfs.get("password") or "",
            )

        kwargs: Dict[str, Any] = {}
        if data.get("id"):
            kwargs["id"] = data["id"]

        return cls(
            name=data.get("name") or "",
            protocol=Protocol(str(data["protocol"]).lower()),
            address=data["address"],
            port=int(data["port"]),
            uuid=data.get("uuid") or "",
            password=data.get("password") or "",
            encryption=data.get("encryption") or "none",
            flow=data.get("flow") or "",
            network=Network(data.get("network") or "tcp"),
            security=Security(data.get("security") or "none"),
            tls=tls,
            reality=reality,
            ws=ws,
            grpc=grpc,
            http=http,
            hysteria2=hysteria2,
            **kwargs
        )
