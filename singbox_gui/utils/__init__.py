"""
工具模块
"""
from .settings import SettingsManager
from .user_config_store import UserConfigStore
from .logging_setup import setup_logging, log_engine_record

__all__ = ['SettingsManager', 'UserConfigStore', 'setup_logging', 'log_engine_record']
