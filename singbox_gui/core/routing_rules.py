"""
路由规则生成器 - 生成 sing-box route.rules

规则顺序：自定义规则 > 模式规则 > route.final（由配置生成器设置）
"""
from typing import Dict, List

from .user_config import DomainRule, ProxyMode, UserConfig, domain_matcher

# 规则集标签，对应资源目录中的 .srs 文件
GEOSITE_CN = "geosite-cn"
GEOIP_CN = "geoip-cn"


def integrate_custom_rules(custom_rules: List[DomainRule]) -> List[dict]:
    """
    按动作分组已启用的自定义规则

    分组按动作首次出现的顺序输出，组内重复的域名只保留第一次。

    Args:
        custom_rules: 用户自定义规则

    Returns:
        sing-box 规则列表
    """
    groups: Dict[str, Dict[str, List[str]]] = {}

    for rule in custom_rules:
        if not rule.enabled:
            continue

        matchers = groups.setdefault(rule.action.value, {"domain": [], "domain_suffix": []})
        key, domain = domain_matcher(rule.pattern)
        if domain and domain not in matchers[key]:
            matchers[key].append(domain)

    rules = []
    for outbound, matchers in groups.items():
        entry: dict = {}
        for key in ("domain", "domain_suffix"):
            if matchers[key]:
                entry[key] = matchers[key]
        if not entry:
            continue
        entry["action"] = "route"
        entry["outbound"] = outbound
        rules.append(entry)

    return rules


def generate_global_rules() -> List[dict]:
    """全局代理：不需要额外规则，未匹配流量由 final 兜底走代理"""
    return []


def generate_smart_rules() -> List[dict]:
    """智能分流：国内域名和国内 IP 直连"""
    return [
        {
            "rule_set": [GEOSITE_CN, GEOIP_CN],
            "action": "route",
            "outbound": "direct",
        }
    ]


def generate_direct_rules() -> List[dict]:
    """直连模式：所有 TCP/UDP 流量直连"""
    return [
        {
            "network": ["tcp", "udp"],
            "action": "route",
            "outbound": "direct",
        }
    ]


def generate_routing_rules(config: UserConfig) -> List[dict]:
    """
    生成有序路由规则列表

    相同输入总是得到完全相同的输出。

    Args:
        config: 用户配置

    Returns:
        sing-box 规则列表
    """
    rules = integrate_custom_rules(config.custom_rules)

    if config.proxy_mode == ProxyMode.SMART:
        rules.extend(generate_smart_rules())
    elif config.proxy_mode == ProxyMode.DIRECT:
        rules.extend(generate_direct_rules())
    else:
        rules.extend(generate_global_rules())

    return rules


def referenced_rule_sets(rules: List[dict]) -> List[str]:
    """收集规则中引用的规则集标签（按首次出现顺序）"""
    tags: List[str] = []
    for rule in rules:
        value = rule.get("rule_set")
        if not value:
            continue
        for tag in ([value] if isinstance(value, str) else value):
            if tag not in tags:
                tags.append(tag)
    return tags


class RoutingRuleGenerator:
    """路由规则生成器"""

    def generate(self, config: UserConfig) -> List[dict]:
        """生成路由规则"""
        return generate_routing_rules(config)

    def required_rule_sets(self, config: UserConfig) -> List[str]:
        """生成规则所需的规则集标签"""
        return referenced_rule_sets(generate_routing_rules(config))
