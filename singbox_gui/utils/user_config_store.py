"""
用户配置存储 - UserConfig 文档的读写与备份
"""
import json
import logging
import os
import shutil
from pathlib import Path
from typing import Optional

from ..core.error_handler import ErrorCategory, handle_error
from ..core.user_config import UserConfig


class UserConfigStore:
    """用户配置存储"""

    def __init__(self, config_path: str = "config/user_config.json"):
        """
        Args:
            config_path: 配置文件路径，备份文件为同名 .backup 文件
        """
        self.config_file = Path(config_path)
        self.backup_file = self.config_file.with_name(self.config_file.name + ".backup")
        self.logger = logging.getLogger(__name__)

    def load(self) -> UserConfig:
        """
        加载用户配置

        主文件损坏时尝试从备份恢复，都不可用时返回默认配置。

        Returns:
            UserConfig 对象
        """
        if not self.config_file.exists() and not self.backup_file.exists():
            self.logger.info("No user config found, using defaults")
            return UserConfig()

        config = self._load_file(self.config_file)
        if config is not None:
            return config

        if self.backup_file.exists():
            self.logger.warning("Main user config missing/corrupted, trying backup")
            config = self._load_file(self.backup_file)
            if config is not None:
                shutil.copy2(self.backup_file, self.config_file)
                self.logger.info(f"User config restored from backup: {self.backup_file}")
                return config

        return UserConfig()

    def save(self, config: UserConfig) -> None:
        """
        校验并保存用户配置，保存前备份旧文件

        Raises:
            ConfigInvalidError: 配置不满足不变量
            OSError: 文件写入失败
        """
        config.validate()

        self.config_file.parent.mkdir(parents=True, exist_ok=True)
        if self.config_file.exists():
            shutil.copy2(self.config_file, self.backup_file)

        tmp_file = self.config_file.with_name(self.config_file.name + ".tmp")
        with open(tmp_file, 'w', encoding='utf-8') as f:
            json.dump(config.to_dict(), f, indent=2, ensure_ascii=False)
        os.replace(tmp_file, self.config_file)

        self.logger.info(f"User config saved: {len(config.servers)} servers")

    def _load_file(self, file_path: Path) -> Optional[UserConfig]:
        """加载指定文件，失败返回 None"""
        if not file_path.exists():
            return None
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            return UserConfig.from_dict(data)
        except (json.JSONDecodeError, KeyError, ValueError, TypeError, AttributeError) as e:
            handle_error(
                category=ErrorCategory.CONFIG_PERSISTENCE,
                code="config_persistence_file_corrupted",
                details=f"{file_path}: {e}"
            )
            return None
