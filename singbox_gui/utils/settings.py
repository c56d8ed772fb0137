"""
设置管理器 - 应用设置持久化
"""
import json
import logging
import os
from typing import Any, Dict


class SettingsManager:
    """应用设置管理器"""

    DEFAULT_SETTINGS = {
        "resources_dir": "resources",
        "engine_path": "",
        "engine_config_path": "config/sing-box.json",
        "user_config_path": "config/user_config.json",
        "startup_grace": 1.0,
        "stop_timeout": 5.0,
        "kill_stale_processes": True,
        "log_dir": "logs",
        "log_level": "INFO",
        "rule_set_base_url": "",
    }

    def __init__(self, config_path: str = "config/settings.json"):
        """
        初始化设置管理器

        Args:
            config_path: 设置文件路径
        """
        self.config_path = config_path
        self._settings: Dict[str, Any] = {}
        self._loaded = False
        self.logger = logging.getLogger(__name__)

    def _ensure_directory(self) -> None:
        """确保配置目录存在"""
        directory = os.path.dirname(self.config_path)
        if directory and not os.path.exists(directory):
            os.makedirs(directory, exist_ok=True)

    def load(self) -> Dict[str, Any]:
        """
        加载设置，文件不存在或损坏时使用默认值

        Returns:
            设置字典
        """
        self._settings = self.DEFAULT_SETTINGS.copy()
        if os.path.exists(self.config_path):
            try:
                with open(self.config_path, 'r', encoding='utf-8') as f:
                    loaded = json.load(f)
                if isinstance(loaded, dict):
                    self._settings.update(loaded)
                else:
                    self.logger.warning(f"Settings file {self.config_path} is not an object, using defaults")
            except json.JSONDecodeError as e:
                self.logger.warning(f"Settings file {self.config_path} is corrupted, using defaults: {e}")
            except OSError as e:
                self.logger.warning(f"Failed to read settings file {self.config_path}: {e}")

        self._loaded = True
        return self._settings.copy()

    def save(self) -> bool:
        """
        保存设置

        Returns:
            是否保存成功
        """
        try:
            self._ensure_directory()
            with open(self.config_path, 'w', encoding='utf-8') as f:
                json.dump(self._settings, f, indent=2, ensure_ascii=False)
            return True
        except OSError as e:
            self.logger.error(f"Failed to save settings: {e}")
            return False

    def get(self, key: str, default: Any = None) -> Any:
        if not self._loaded:
            self.load()
        return self._settings.get(key, default)

    def set(self, key: str, value: Any, auto_save: bool = True) -> None:
        """
        设置配置项

        Args:
            key: 设置键
            value: 设置值
            auto_save: 是否自动保存
        """
        if not self._loaded:
            self.load()
        self._settings[key] = value
        if auto_save:
            self.save()

    def get_all(self) -> Dict[str, Any]:
        if not self._loaded:
            self.load()
        return self._settings.copy()

    def reset_to_defaults(self) -> None:
        """重置为默认设置"""
        self._settings = self.DEFAULT_SETTINGS.copy()
        self._loaded = True
        self.save()

    def update(self, settings: Dict[str, Any], auto_save: bool = True) -> None:
        """批量更新设置"""
        if not self._loaded:
            self.load()
        self._settings.update(settings)
        if auto_save:
            self.save()

    # 便捷属性访问
    @property
    def resources_dir(self) -> str:
        return self.get("resources_dir", self.DEFAULT_SETTINGS["resources_dir"])

    @property
    def engine_path(self) -> str:
        """自定义 sing-box 路径，为空表示使用资源目录中的默认路径"""
        return self.get("engine_path", "")

    @engine_path.setter
    def engine_path(self, value: str):
        self.set("engine_path", value)

    @property
    def engine_config_path(self) -> str:
        return self.get("engine_config_path", self.DEFAULT_SETTINGS["engine_config_path"])

    @property
    def user_config_path(self) -> str:
        return self.get("user_config_path", self.DEFAULT_SETTINGS["user_config_path"])

    @property
    def startup_grace(self) -> float:
        return float(self.get("startup_grace", self.DEFAULT_SETTINGS["startup_grace"]))

    @property
    def stop_timeout(self) -> float:
        return float(self.get("stop_timeout", self.DEFAULT_SETTINGS["stop_timeout"]))

    @property
    def kill_stale_processes(self) -> bool:
        return bool(self.get("kill_stale_processes", True))

    @property
    def log_dir(self) -> str:
        return self.get("log_dir", self.DEFAULT_SETTINGS["log_dir"])

    @property
    def log_level(self) -> str:
        return self.get("log_level", self.DEFAULT_SETTINGS["log_level"])

    @log_level.setter
    def log_level(self, value: str):
        self.set("log_level", value)

    @property
    def rule_set_base_url(self) -> str:
        return self.get("rule_set_base_url", "")
