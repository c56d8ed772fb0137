"""
UserConfig 数据模型 - 用户级配置（服务器列表、代理模式、自定义规则）
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .exceptions import ConfigInvalidError
from .profile import ServerProfile


class ProxyMode(Enum):
    """流量分流策略"""
    GLOBAL = "global"
    SMART = "smart"
    DIRECT = "direct"


class ModeType(Enum):
    """代理接入方式"""
    LOCAL_PROXY = "local_proxy"
    TRANSPARENT = "transparent"

    @classmethod
    def parse(cls, value: str) -> "ModeType":
        """兼容旧配置中的 systemProxy / tun 写法"""
        normalized = str(value).strip().lower()
        aliases = {
            "systemproxy": cls.LOCAL_PROXY,
            "system_proxy": cls.LOCAL_PROXY,
            "local_proxy": cls.LOCAL_PROXY,
            "tun": cls.TRANSPARENT,
            "transparent": cls.TRANSPARENT,
        }
        if normalized not in aliases:
            raise ValueError(f"Unknown mode type: {value}")
        return aliases[normalized]


class RuleAction(Enum):
    """自定义规则动作"""
    PROXY = "proxy"
    DIRECT = "direct"
    BLOCK = "block"


WILDCARD_PREFIX = "*."


def domain_matcher(pattern: str) -> tuple:
    """
    将域名模式转换为匹配器

    Args:
        pattern: 用户输入的域名，如 *.example.com 或 example.com

    Returns:
        (匹配字段名, 域名) 元组
    """
    pattern = pattern.strip()
    if pattern.startswith(WILDCARD_PREFIX):
        return "domain_suffix", pattern[len(WILDCARD_PREFIX):].strip()
    return "domain", pattern


TUN_STACKS = ("system", "gvisor", "mixed")
LOG_LEVELS = ("debug", "info", "warn", "error", "fatal")


@dataclass
class DomainRule:
    """自定义域名规则"""
    pattern: str
    action: RuleAction
    enabled: bool = True
    id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "pattern": self.pattern,
            "action": self.action.value,
            "enabled": self.enabled,
        }
        if self.id:
            data["id"] = self.id
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> List["DomainRule"]:
        """
        从字典创建规则

        旧版配置一条规则可包含多个域名（domains 数组），这里展开为多条规则。

        Returns:
            规则列表
        """
        action = RuleAction(str(data["action"]).lower())
        enabled = bool(data.get("enabled", True))
        rule_id = data.get("id") or ""

        if "domains" in data:
            patterns = list(data["domains"] or [])
        else:
            patterns = [data.get("pattern", "")]

        return [cls(pattern=p, action=action, enabled=enabled, id=rule_id) for p in patterns]


@dataclass
class TunSettings:
    """TUN（透明代理）模式设置"""
    mtu: int = 1400
    stack: str = "mixed"
    auto_route: bool = True
    strict_route: bool = True
    inet4_address: str = "172.19.0.1/30"
    interface_name: str = ""

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "mtu": self.mtu,
            "stack": self.stack,
            "autoRoute": self.auto_route,
            "strictRoute": self.strict_route,
            "inet4Address": self.inet4_address,
        }
        if self.interface_name:
            data["interfaceName"] = self.interface_name
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TunSettings":
        defaults = cls()
        return cls(
            mtu=int(data.get("mtu") or defaults.mtu),
            stack=data.get("stack") or defaults.stack,
            auto_route=bool(data.get("autoRoute", defaults.auto_route)),
            strict_route=bool(data.get("strictRoute", defaults.strict_route)),
            inet4_address=data.get("inet4Address") or defaults.inet4_address,
            interface_name=data.get("interfaceName") or "",
        )


@dataclass
class UserConfig:
    """用户配置"""
    servers: List[ServerProfile] = field(default_factory=list)
    selected_server_id: Optional[str] = None
    proxy_mode: ProxyMode = ProxyMode.SMART
    mode_type: ModeType = ModeType.LOCAL_PROXY
    tun_config: TunSettings = field(default_factory=TunSettings)
    custom_rules: List[DomainRule] = field(default_factory=list)
    socks_port: int = 1080
    http_port: int = 1081
    log_level: str = "info"

    def get_selected_server(self) -> Optional[ServerProfile]:
        """获取当前选中的服务器，未选择或已被删除时返回 None"""
        if not self.selected_server_id:
            return None
        for server in self.servers:
            if server.id == self.selected_server_id:
                return server
        return None

    def validate(self) -> None:
        """
        校验配置不变量

        Raises:
            ConfigInvalidError: 任一不变量不成立
        """
        if self.selected_server_id and self.get_selected_server() is None:
            raise ConfigInvalidError(f"选中的服务器不存在: {self.selected_server_id}")

        for name, port in (("socks_port", self.socks_port), ("http_port", self.http_port)):
            if not isinstance(port, int) or not (1 <= port <= 65535):
                raise ConfigInvalidError(f"端口无效: {name}={port}")
        if self.socks_port == self.http_port:
            raise ConfigInvalidError(f"SOCKS 与 HTTP 端口不能相同: {self.socks_port}")

        for rule in self.custom_rules:
            if not rule.pattern or not domain_matcher(rule.pattern)[1]:
                raise ConfigInvalidError(f"自定义规则的域名不能为空: {rule.pattern!r}")

        if self.log_level not in LOG_LEVELS:
            raise ConfigInvalidError(f"日志级别无效: {self.log_level}")

    def to_dict(self) -> Dict[str, Any]:
        """转换为持久化字典"""
        return {
            "servers": [s.to_dict() for s in self.servers],
            "selectedServerId": self.selected_server_id,
            "proxyMode": self.proxy_mode.value,
            "proxyModeType": self.mode_type.value,
            "tunConfig": self.tun_config.to_dict(),
            "customRules": [r.to_dict() for r in self.custom_rules],
            "socksPort": self.socks_port,
            "httpPort": self.http_port,
            "logLevel": self.log_level,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserConfig":
        """从持久化字典创建实例"""
        rules: List[DomainRule] = []
        for rule_data in data.get("customRules") or []:
            rules.extend(DomainRule.from_dict(rule_data))

        defaults = cls()
        return cls(
            servers=[ServerProfile.from_dict(s) for s in data.get("servers") or []],
            selected_server_id=data.get("selectedServerId"),
            proxy_mode=ProxyMode(str(data.get("proxyMode") or defaults.proxy_mode.value).lower()),
            mode_type=ModeType.parse(data.get("proxyModeType") or defaults.mode_type.value),
            tun_config=TunSettings.from_dict(data.get("tunConfig") or {}),
            custom_rules=rules,
            socks_port=int(data.get("socksPort") or defaults.socks_port),
            http_port=int(data.get("httpPort") or defaults.http_port),
            log_level=data.get("logLevel") or defaults.log_level,
        )
