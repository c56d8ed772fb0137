"""
配置生成器 - 生成 sing-box JSON 配置

compile_config 是纯函数：相同的 (UserConfig, ModeType) 总是得到完全相同的文档，
写入文件由调用方负责。
"""
import ipaddress
import json
import os
import re
from typing import Dict, List, Optional

from .exceptions import ConfigInvalidError, NoProfileSelectedError
from .profile import Network, Protocol, Security, ServerProfile
from .routing_rules import GEOSITE_CN, generate_routing_rules, referenced_rule_sets
from .user_config import ModeType, ProxyMode, TUN_STACKS, UserConfig

LOOPBACK = "127.0.0.1"
REMOTE_DNS_SERVER = "8.8.8.8"
LOCAL_DNS_SERVER = "223.5.5.5"
DEFAULT_FINGERPRINT = "chrome"

_HTTP_METHOD_RE = re.compile(r"^[A-Z]+$")
_HEADER_NAME_RE = re.compile(r"^[A-Za-z0-9-]+$")


def _is_ip_address(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
        return True
    except ValueError:
        return False


def validate_profile(server: ServerProfile) -> None:
    """
    校验服务器配置能否生成合法的出站

    Args:
        server: 服务器配置

    Raises:
        ConfigInvalidError: 字段缺失或格式错误
    """
    if not server.address or not server.address.strip():
        raise ConfigInvalidError(f"服务器地址不能为空: {server.name}")
    if not (1 <= server.port <= 65535):
        raise ConfigInvalidError(f"服务器端口无效: {server.port}")
    if not server.credential:
        field_name = "UUID" if server.protocol == Protocol.VLESS else "密码"
        raise ConfigInvalidError(f"服务器缺少{field_name}: {server.name}")

    if server.protocol == Protocol.HYSTERIA2:
        if server.network != Network.TCP:
            raise ConfigInvalidError(f"Hysteria2 不支持传输层 {server.network.value}")
        hy2 = server.hysteria2
        if hy2.up_mbps < 0 or hy2.down_mbps < 0:
            raise ConfigInvalidError("Hysteria2 带宽不能为负数")
        if hy2.obfs_type and hy2.obfs_type != "salamander":
            raise ConfigInvalidError(f"不支持的混淆类型: {hy2.obfs_type}")
        if hy2.obfs_type and not hy2.obfs_password:
            raise ConfigInvalidError("salamander 混淆需要密码")

    if server.network == Network.WS:
        ws = server.ws
        if ws.path and not ws.path.startswith("/"):
            raise ConfigInvalidError(f"WebSocket 路径必须以 / 开头: {ws.path}")
        if ws.max_early_data < 0:
            raise ConfigInvalidError(f"maxEarlyData 不能为负数: {ws.max_early_data}")
        if ws.early_data_header_name and not _HEADER_NAME_RE.match(ws.early_data_header_name):
            raise ConfigInvalidError(f"earlyDataHeaderName 无效: {ws.early_data_header_name}")
        if "Host" in ws.headers and not ws.headers["Host"].strip():
            raise ConfigInvalidError("WebSocket Host 不能为空")
    elif server.network == Network.GRPC:
        if any(ch.isspace() for ch in server.grpc.service_name):
            raise ConfigInvalidError(f"gRPC serviceName 不能包含空白: {server.grpc.service_name}")
    elif server.network == Network.HTTP:
        http = server.http
        if any(not host.strip() for host in http.host):
            raise ConfigInvalidError("HTTP host 列表包含空值")
        if http.path and not http.path.startswith("/"):
            raise ConfigInvalidError(f"HTTP 路径必须以 / 开头: {http.path}")
        if http.method and not _HTTP_METHOD_RE.match(http.method):
            raise ConfigInvalidError(f"HTTP 方法无效: {http.method}")

    if server.security == Security.REALITY:
        if server.reality is None or not server.reality.public_key:
            raise ConfigInvalidError("Reality 缺少 publicKey")


def generate_log_config(config: UserConfig) -> dict:
    """生成日志配置"""
    return {
        "level": config.log_level,
        "timestamp": True,
    }


def generate_dns_config(config: UserConfig, server: ServerProfile) -> dict:
    """
    生成 DNS 配置（仅透明代理模式）

    远程 DNS 经代理出站，本地 DNS 直连；代理服务器域名必须用本地 DNS 解析，
    否则解析服务器地址需要先连上服务器。
    """
    rules = []
    if not _is_ip_address(server.address):
        rules.append({"domain": [server.address], "server": "dns-local"})
    if config.proxy_mode != ProxyMode.DIRECT:
        rules.append({"rule_set": GEOSITE_CN, "server": "dns-local"})

    dns = {
        "servers": [
            {
                "tag": "dns-remote",
                "type": "udp",
                "server": REMOTE_DNS_SERVER,
                "detour": "proxy",
            },
            {
                "tag": "dns-local",
                "type": "udp",
                "server": LOCAL_DNS_SERVER,
            },
        ],
        "rules": rules,
        "final": "dns-local" if config.proxy_mode == ProxyMode.DIRECT else "dns-remote",
        "strategy": "ipv4_only",
    }
    return dns


def generate_inbounds(config: UserConfig, mode_type: ModeType) -> List[dict]:
    """生成入站配置"""
    if mode_type == ModeType.LOCAL_PROXY:
        return [
            {
                "type": "http",
                "tag": "http-in",
                "listen": LOOPBACK,
                "listen_port": config.http_port,
            },
            {
                "type": "socks",
                "tag": "socks-in",
                "listen": LOOPBACK,
                "listen_port": config.socks_port,
            },
        ]

    tun = config.tun_config
    if tun.stack not in TUN_STACKS:
        raise ConfigInvalidError(f"TUN 协议栈无效: {tun.stack}")
    if not (576 <= tun.mtu <= 65535):
        raise ConfigInvalidError(f"TUN MTU 无效: {tun.mtu}")

    inbound = {
        "type": "tun",
        "tag": "tun-in",
    }
    if tun.interface_name:
        inbound["interface_name"] = tun.interface_name
    inbound.update({
        "address": [tun.inet4_address],
        "mtu": tun.mtu,
        "auto_route": tun.auto_route,
        "strict_route": tun.strict_route,
        "stack": tun.stack,
    })
    return [inbound]


def generate_tls_config(server: ServerProfile) -> dict:
    """生成 TLS / Reality 配置"""
    tls_settings = server.tls
    tls = {
        "enabled": True,
        "server_name": tls_settings.server_name or server.address,
        "insecure": tls_settings.allow_insecure,
    }
    if tls_settings.alpn:
        tls["alpn"] = list(tls_settings.alpn)

    fingerprint = tls_settings.fingerprint
    if server.security == Security.REALITY and not fingerprint:
        fingerprint = DEFAULT_FINGERPRINT
    if fingerprint:
        tls["utls"] = {
            "enabled": True,
            "fingerprint": fingerprint,
        }

    if server.security == Security.REALITY:
        tls["reality"] = {
            "enabled": True,
            "public_key": server.reality.public_key,
            "short_id": server.reality.short_id,
        }
    return tls


def generate_transport_config(server: ServerProfile) -> Optional[dict]:
    """生成传输层配置，TCP 不需要 transport"""
    if server.network == Network.WS:
        ws = server.ws
        transport = {
            "type": "ws",
            "path": ws.path or "/",
        }
        if ws.headers:
            transport["headers"] = dict(ws.headers)
        if ws.max_early_data:
            transport["max_early_data"] = ws.max_early_data
        if ws.early_data_header_name:
            transport["early_data_header_name"] = ws.early_data_header_name
        return transport

    if server.network == Network.GRPC:
        return {
            "type": "grpc",
            "service_name": server.grpc.service_name,
        }

    if server.network == Network.HTTP:
        http = server.http
        transport = {"type": "http"}
        if http.host:
            transport["host"] = list(http.host)
        if http.path:
            transport["path"] = http.path
        if http.method:
            transport["method"] = http.method
        return transport

    return None


def generate_proxy_outbound(server: ServerProfile, mode_type: ModeType) -> dict:
    """
    生成代理出站（tag 固定为 proxy）

    Args:
        server: 选中的服务器
        mode_type: 代理接入方式

    Returns:
        sing-box outbound 字典
    """
    validate_profile(server)

    outbound = {
        "type": server.protocol.value,
        "tag": "proxy",
        "server": server.address,
        "server_port": server.port,
    }

    if server.protocol == Protocol.VLESS:
        outbound["uuid"] = server.uuid
        if server.flow:
            outbound["flow"] = server.flow
        outbound["packet_encoding"] = "xudp"
    elif server.protocol == Protocol.TROJAN:
        outbound["password"] = server.password
    elif server.protocol == Protocol.HYSTERIA2:
        outbound["password"] = server.password
        hy2 = server.hysteria2
        if hy2.up_mbps:
            outbound["up_mbps"] = hy2.up_mbps
        if hy2.down_mbps:
            outbound["down_mbps"] = hy2.down_mbps
        if hy2.obfs_type:
            outbound["obfs"] = {
                "type": hy2.obfs_type,
                "password": hy2.obfs_password,
            }

    if server.security in (Security.TLS, Security.REALITY):
        outbound["tls"] = generate_tls_config(server)

    transport = generate_transport_config(server)
    if transport is not None:
        outbound["transport"] = transport

    if mode_type == ModeType.TRANSPARENT:
        outbound["domain_resolver"] = "dns-local"

    return outbound


def generate_outbounds(server: ServerProfile, mode_type: ModeType) -> List[dict]:
    """生成出站列表：proxy、direct、block"""
    return [
        generate_proxy_outbound(server, mode_type),
        {"type": "direct", "tag": "direct"},
        {"type": "block", "tag": "block"},
    ]


def generate_rule_sets(tags: List[str], rule_set_paths: Dict[str, str]) -> List[dict]:
    """生成本地规则集声明"""
    return [
        {
            "tag": tag,
            "type": "local",
            "format": "binary",
            "path": rule_set_paths.get(tag, f"{tag}.srs"),
        }
        for tag in tags
    ]


def generate_route_config(config: UserConfig,
                          mode_type: ModeType,
                          dns: Optional[dict],
                          rule_set_paths: Dict[str, str]) -> dict:
    """生成路由配置"""
    rules: List[dict] = []
    if mode_type == ModeType.TRANSPARENT:
        rules.append({"action": "sniff"})
        rules.append({"protocol": "dns", "action": "hijack-dns"})
    rules.extend(generate_routing_rules(config))

    tags = referenced_rule_sets(rules)
    if dns:
        for tag in referenced_rule_sets(dns.get("rules", [])):
            if tag not in tags:
                tags.append(tag)

    route: dict = {"rules": rules}
    if tags:
        route["rule_set"] = generate_rule_sets(tags, rule_set_paths)
    route["final"] = "direct" if config.proxy_mode == ProxyMode.DIRECT else "proxy"

    if mode_type == ModeType.TRANSPARENT:
        route["auto_detect_interface"] = True
        route["default_domain_resolver"] = "dns-local"

    return route


def compile_config(config: UserConfig,
                   mode_type: Optional[ModeType] = None,
                   rule_set_paths: Optional[Dict[str, str]] = None) -> dict:
    """
    生成完整的 sing-box 配置

    Args:
        config: 用户配置
        mode_type: 代理接入方式，默认取 config.mode_type
        rule_set_paths: 规则集标签到本地文件路径的映射

    Returns:
        sing-box 配置字典

    Raises:
        NoProfileSelectedError: 没有选中的服务器
        ConfigInvalidError: 配置无效
    """
    if mode_type is None:
        mode_type = config.mode_type
    rule_set_paths = rule_set_paths or {}

    server = config.get_selected_server()
    if server is None:
        raise NoProfileSelectedError()

    config.validate()

    document = {"log": generate_log_config(config)}

    dns = None
    if mode_type == ModeType.TRANSPARENT:
        dns = generate_dns_config(config, server)
        document["dns"] = dns

    document["inbounds"] = generate_inbounds(config, mode_type)
    document["outbounds"] = generate_outbounds(server, mode_type)
    document["route"] = generate_route_config(config, mode_type, dns, rule_set_paths)

    return document


def dump_config(document: dict) -> str:
    """序列化配置（字段顺序即插入顺序，输出稳定）"""
    return json.dumps(document, indent=2, ensure_ascii=False)


def save_config(document: dict, filepath: str) -> None:
    """
    保存配置到文件

    Args:
        document: 配置字典
        filepath: 文件路径
    """
    directory = os.path.dirname(filepath)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(filepath, "w", encoding="utf-8") as f:
        f.write(dump_config(document))


def load_config(filepath: str) -> dict:
    """从文件加载配置"""
    with open(filepath, "r", encoding="utf-8") as f:
        return json.load(f)


class ConfigGenerator:
    """配置生成器类"""

    def __init__(self, rule_set_paths: Optional[Dict[str, str]] = None):
        self.rule_set_paths = dict(rule_set_paths or {})

    def generate(self, config: UserConfig, mode_type: Optional[ModeType] = None) -> dict:
        """生成配置"""
        return compile_config(config, mode_type, self.rule_set_paths)

    def save(self, document: dict, filepath: str):
        """保存配置"""
        save_config(document, filepath)

    def generate_and_save(self, config: UserConfig, filepath: str,
                          mode_type: Optional[ModeType] = None) -> dict:
        """生成并保存配置"""
        document = self.generate(config, mode_type)
        self.save(document, filepath)
        return document
