"""
分享链接通用解析 - authority / query / fragment 处理以及传输层、安全层参数
"""
import urllib.parse
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from ..exceptions import LinkParseError, MissingCredentialError
from ..profile import (
    GrpcSettings, HttpSettings, Network, RealitySettings, Security,
    ServerProfile, TlsSettings, WsSettings,
)

DEFAULT_PORT = 443

# 查询参数中保留不编码的字符
QUERY_SAFE = "/,"


@dataclass
class LinkParts:
    """拆分后的链接"""
    credential: str
    address: str
    port: int
    params: Dict[str, str]
    name: str


def parse_bool(value: Optional[str]) -> bool:
    """兼容 1/0 与 true/false 两种写法"""
    if value is None:
        return False
    return value.strip().lower() in ("1", "true")


def split_link(link: str, protocol: str) -> LinkParts:
    """
    拆分 scheme://credential@host:port?query#name

    Args:
        link: 原始链接
        protocol: 协议名（用于错误信息）

    Returns:
        LinkParts

    Raises:
        MissingCredentialError: @ 之前为空
        LinkParseError: 地址或端口格式错误
    """
    link = link.strip()
    _, sep, rest = link.partition("://")
    if not sep:
        raise LinkParseError(link, "缺少 scheme")

    rest, _, fragment = rest.partition("#")
    rest, _, query = rest.partition("?")
    authority = rest.split("/", 1)[0]

    if "@" in authority:
        raw_credential, server_part = authority.rsplit("@", 1)
    else:
        raw_credential, server_part = "", authority

    credential = urllib.parse.unquote(raw_credential)
    if not credential.strip():
        raise MissingCredentialError(link, protocol)

    # 处理 IPv6 地址
    if server_part.startswith("["):
        bracket_end = server_part.find("]")
        if bracket_end == -1:
            raise LinkParseError(link, "IPv6 地址缺少 ]")
        address = server_part[1:bracket_end]
        port_part = server_part[bracket_end + 1:]
        if port_part and not port_part.startswith(":"):
            raise LinkParseError(link, f"地址格式错误: {server_part}")
        port_str = port_part[1:]
    elif ":" in server_part:
        address, port_str = server_part.rsplit(":", 1)
    else:
        address, port_str = server_part, ""

    if not address:
        raise LinkParseError(link, "缺少服务器地址")

    if port_str:
        if not port_str.isdigit():
            raise LinkParseError(link, f"端口无效: {port_str}")
        port = int(port_str)
    else:
        port = DEFAULT_PORT
    if not (1 <= port <= 65535):
        raise LinkParseError(link, f"端口超出范围: {port}")

    params: Dict[str, str] = {}
    for key, value in urllib.parse.parse_qsl(query, keep_blank_values=True):
        params.setdefault(key, value)

    name = urllib.parse.unquote(fragment) if fragment else ""
    if not name:
        name = f"{address}:{port}"

    return LinkParts(
        credential=credential,
        address=address,
        port=port,
        params=params,
        name=name,
    )


def _parse_int(link: str, params: Dict[str, str], key: str) -> int:
    value = params.get(key, "").strip()
    if not value:
        return 0
    if not value.isdigit():
        raise LinkParseError(link, f"{key} 必须是数字: {value}")
    return int(value)


def parse_transport(link: str, params: Dict[str, str]) -> Tuple[Network, dict]:
    """
    解析传输层参数

    Returns:
        (传输层类型, ServerProfile 关键字参数)
    """
    network_value = (params.get("type") or "tcp").lower()
    if network_value == "h2":
        network_value = "http"
    try:
        network = Network(network_value)
    except ValueError:
        raise LinkParseError(link, f"不支持的传输层类型: {network_value}")

    if network == Network.WS:
        headers = {}
        if params.get("host"):
            headers["Host"] = params["host"]
        return network, {"ws": WsSettings(
            path=params.get("path", ""),
            headers=headers,
            max_early_data=_parse_int(link, params, "maxEarlyData"),
            early_data_header_name=params.get("earlyDataHeaderName", ""),
        )}

    if network == Network.GRPC:
        return network, {"grpc": GrpcSettings(
            service_name=params.get("serviceName", ""),
            multi_mode=params.get("mode", "").lower() == "multi",
        )}

    if network == Network.HTTP:
        hosts = [h.strip() for h in params.get("host", "").split(",") if h.strip()]
        return network, {"http": HttpSettings(
            host=hosts,
            path=params.get("path", ""),
            method=params.get("method", ""),
        )}

    return network, {}


def parse_tls(params: Dict[str, str]) -> TlsSettings:
    """
    解析 TLS 参数

    serverName 优先取 sni 参数（即使为空），其次取 host 参数的第一个值。
    """
    if "sni" in params:
        server_name = params["sni"]
    else:
        server_name = params.get("host", "").split(",")[0].strip()

    allow_insecure = parse_bool(params.get("allowInsecure")) or parse_bool(params.get("insecure"))
    alpn = [a.strip() for a in params.get("alpn", "").split(",") if a.strip()]
    fingerprint = params.get("fp") or params.get("fingerprint") or ""

    return TlsSettings(
        server_name=server_name,
        allow_insecure=allow_insecure,
        alpn=alpn,
        fingerprint=fingerprint,
    )


def parse_security(link: str, params: Dict[str, str],
                   forced: Optional[Security] = None) -> Tuple[Security, dict]:
    """
    解析安全层参数

    Args:
        link: 原始链接
        params: 查询参数
        forced: 协议强制使用的安全类型（Hysteria2 固定 TLS）

    Returns:
        (安全类型, ServerProfile 关键字参数)
    """
    if forced is not None:
        security = forced
    else:
        security_value = (params.get("security") or "none").lower()
        try:
            security = Security(security_value)
        except ValueError:
            raise LinkParseError(link, f"不支持的安全类型: {security_value}")

    if security == Security.NONE:
        return security, {}

    kwargs = {"tls": parse_tls(params)}

    if security == Security.REALITY:
        public_key = params.get("pbk") or params.get("publicKey") or ""
        # 缺少公钥时整个 reality 配置无效
        if public_key:
            kwargs["reality"] = RealitySettings(
                public_key=public_key,
                short_id=params.get("sid") or params.get("shortId") or "",
            )

    return security, kwargs


def transport_params(profile: ServerProfile) -> List[Tuple[str, str]]:
    """生成传输层查询参数"""
    params = [("type", profile.network.value)]

    if profile.network == Network.WS and profile.ws is not None:
        ws = profile.ws
        if ws.path:
            params.append(("path", ws.path))
        if ws.host:
            params.append(("host", ws.host))
        if ws.max_early_data:
            params.append(("maxEarlyData", str(ws.max_early_data)))
        if ws.early_data_header_name:
            params.append(("earlyDataHeaderName", ws.early_data_header_name))

    elif profile.network == Network.GRPC and profile.grpc is not None:
        if profile.grpc.service_name:
            params.append(("serviceName", profile.grpc.service_name))
        if profile.grpc.multi_mode:
            params.append(("mode", "multi"))

    elif profile.network == Network.HTTP and profile.http is not None:
        http = profile.http
        if http.host:
            params.append(("host", ",".join(http.host)))
        if http.path:
            params.append(("path", http.path))
        if http.method:
            params.append(("method", http.method))

    return params


def tls_params(profile: ServerProfile, has_host_param: bool,
               insecure_key: str = "allowInsecure") -> List[Tuple[str, str]]:
    """
    生成 TLS 查询参数

    Args:
        profile: 服务器配置
        has_host_param: 链接中是否已有 host 参数（决定是否需要显式的空 sni）
        insecure_key: 跳过证书验证的参数名
    """
    tls = profile.tls
    if tls is None:
        return []

    params = []
    # 没有 sni 时解析会回退到 host，显式写出空 sni 保证往返一致
    if tls.server_name or has_host_param:
        params.append(("sni", tls.server_name))
    if tls.allow_insecure:
        params.append((insecure_key, "1"))
    if tls.alpn:
        params.append(("alpn", ",".join(tls.alpn)))
    if tls.fingerprint:
        params.append(("fp", tls.fingerprint))
    return params


def security_params(profile: ServerProfile, has_host_param: bool) -> List[Tuple[str, str]]:
    """生成安全层查询参数"""
    if profile.security == Security.NONE:
        return []

    params = [("security", profile.security.value)]
    params.extend(tls_params(profile, has_host_param))

    if profile.security == Security.REALITY and profile.reality is not None:
        params.append(("pbk", profile.reality.public_key))
        if profile.reality.short_id:
            params.append(("sid", profile.reality.short_id))

    return params


def build_link(scheme: str, profile: ServerProfile, params: List[Tuple[str, str]]) -> str:
    """
    组装分享链接

    Args:
        scheme: 协议 scheme，不含 ://
        profile: 服务器配置
        params: 有序查询参数

    Returns:
        分享链接
    """
    credential = urllib.parse.quote(profile.credential, safe="")
    link = f"{scheme}://{credential}@{profile.display_address}"

    if params:
        link += "?" + urllib.parse.urlencode(params, quote_via=urllib.parse.quote, safe=QUERY_SAFE)

    name = profile.name or f"{profile.address}:{profile.port}"
    link += "#" + urllib.parse.quote(name, safe="")
    return link
