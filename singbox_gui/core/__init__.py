"""
核心模块
"""
from .profile import ServerProfile, Protocol, Network, Security
from .user_config import UserConfig, DomainRule, ProxyMode, ModeType, RuleAction, TunSettings
from .routing_rules import RoutingRuleGenerator, generate_routing_rules
from .config_generator import ConfigGenerator, compile_config, dump_config
from .parsers import protocol_factory, parse_url, generate_url, is_supported, parse_links
from .events import EventBus, Started, Stopped, Log, FatalError, LogRecord
from .engine import EngineLauncher, EngineProcess, SubprocessLauncher
from .singbox_service import SingBoxService, ServiceState, StatusSnapshot
from .resources import ResourceManager

__all__ = [
    'ServerProfile',
    'Protocol',
    'Network',
    'Security',
    'UserConfig',
    'DomainRule',
    'ProxyMode',
    'ModeType',
    'RuleAction',
    'TunSettings',
    'RoutingRuleGenerator',
    'generate_routing_rules',
    'ConfigGenerator',
    'compile_config',
    'dump_config',
    'protocol_factory',
    'parse_url',
    'generate_url',
    'is_supported',
    'parse_links',
    'EventBus',
    'Started',
    'Stopped',
    'Log',
    'FatalError',
    'LogRecord',
    'EngineLauncher',
    'EngineProcess',
    'SubprocessLauncher',
    'SingBoxService',
    'ServiceState',
    'StatusSnapshot',
    'ResourceManager',
]
