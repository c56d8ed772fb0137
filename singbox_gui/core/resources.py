"""
资源管理器 - sing-box 可执行文件和规则集文件的路径与下载
"""
import asyncio
import logging
import os
import platform
import sys
from typing import Dict, Iterable, List, Optional, Tuple

import aiohttp

from .error_handler import ErrorCategory, handle_error
from .exceptions import ResourceError
from .routing_rules import GEOIP_CN, GEOSITE_CN

RULE_SET_FILES = {
    GEOSITE_CN: "geosite-cn.srs",
    GEOIP_CN: "geoip-cn.srs",
}

RULE_SET_URLS = {
    GEOSITE_CN: "https://raw.githubusercontent.com/SagerNet/sing-geosite/rule-set/geosite-cn.srs",
    GEOIP_CN: "https://raw.githubusercontent.com/SagerNet/sing-geoip/rule-set/geoip-cn.srs",
}


class ResourceManager:
    """资源管理器"""

    def __init__(self,
                 resources_dir: str = "resources",
                 rule_set_base_url: str = "",
                 timeout: float = 30.0,
                 platform_name: Optional[str] = None):
        """
        初始化资源管理器

        Args:
            resources_dir: 资源根目录
            rule_set_base_url: 规则集镜像地址，为空时使用官方地址
            timeout: 下载超时时间（秒）
            platform_name: 平台名称，默认为 sys.platform
        """
        self.resources_dir = resources_dir
        self.rule_set_base_url = rule_set_base_url.rstrip("/")
        self.timeout = timeout
        self.platform = platform_name or sys.platform
        self.logger = logging.getLogger(__name__)

    @property
    def data_dir(self) -> str:
        return os.path.join(self.resources_dir, "data")

    def get_platform_dir(self) -> str:
        """获取平台相关的可执行文件目录"""
        if self.platform.startswith("win"):
            name = "win"
        elif self.platform == "darwin":
            name = "mac-arm64" if platform.machine().lower() in ("arm64", "aarch64") else "mac-x64"
        else:
            name = "linux"
        return os.path.join(self.resources_dir, name)

    def get_engine_path(self) -> str:
        """获取 sing-box 可执行文件路径（Windows 需要 .exe 扩展名）"""
        filename = "sing-box.exe" if self.platform.startswith("win") else "sing-box"
        return os.path.join(self.get_platform_dir(), filename)

    def get_rule_set_path(self, tag: str) -> str:
        """
        获取规则集文件路径

        Raises:
            KeyError: 未知的规则集标签
        """
        return os.path.join(self.data_dir, RULE_SET_FILES[tag])

    def get_rule_set_paths(self) -> Dict[str, str]:
        """获取所有规则集的 标签 -> 路径 映射"""
        return {tag: self.get_rule_set_path(tag) for tag in RULE_SET_FILES}

    def get_rule_set_url(self, tag: str) -> str:
        if self.rule_set_base_url:
            return f"{self.rule_set_base_url}/{RULE_SET_FILES[tag]}"
        return RULE_SET_URLS[tag]

    def check_resources_exist(self, engine_path: Optional[str] = None) -> Tuple[bool, List[str]]:
        """
        检查资源文件是否存在

        Args:
            engine_path: 自定义可执行文件路径

        Returns:
            (是否全部存在, 缺失项描述列表)
        """
        missing = []

        engine_path = engine_path or self.get_engine_path()
        if not os.path.isfile(engine_path):
            missing.append(f"sing-box executable: {engine_path}")

        for tag, path in self.get_rule_set_paths().items():
            if not os.path.isfile(path):
                missing.append(f"{tag}: {path}")

        return not missing, missing

    def require_resources(self, engine_path: Optional[str] = None) -> None:
        """
        确认资源齐全

        Raises:
            ResourceError: 有文件缺失
        """
        exists, missing = self.check_resources_exist(engine_path)
        if not exists:
            raise ResourceError("资源文件缺失", details="\n".join(missing))

    async def download_rule_set(self, session: aiohttp.ClientSession, tag: str) -> str:
        """
        下载单个规则集，先写入临时文件再替换，避免留下不完整的文件

        Returns:
            保存路径
        """
        url = self.get_rule_set_url(tag)
        path = self.get_rule_set_path(tag)
        tmp_path = path + ".tmp"

        async with session.get(url) as response:
            if response.status != 200:
                raise ResourceError(f"HTTP 错误: {response.status}", details=url)
            content = await response.read()

        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(tmp_path, "wb") as f:
            f.write(content)
        os.replace(tmp_path, path)

        self.logger.info(f"Downloaded rule set {tag} ({len(content)} bytes)")
        return path

    async def update_rule_sets(self, tags: Optional[Iterable[str]] = None) -> Dict[str, bool]:
        """
        并发下载规则集

        Args:
            tags: 要更新的规则集标签，默认全部

        Returns:
            标签 -> 是否成功
        """
        tags = list(tags) if tags is not None else list(RULE_SET_FILES)
        timeout = aiohttp.ClientTimeout(total=self.timeout)

        async with aiohttp.ClientSession(timeout=timeout) as session:
            results = await asyncio.gather(
                *(self.download_rule_set(session, tag) for tag in tags),
                return_exceptions=True
            )

        status = {}
        for tag, result in zip(tags, results):
            if isinstance(result, (aiohttp.ClientError, asyncio.TimeoutError, OSError, ResourceError)):
                handle_error(
                    category=ErrorCategory.RESOURCE,
                    code="resource_download_failed",
                    details=f"{tag}: {result}",
                    context={"url": self.get_rule_set_url(tag)}
                )
                status[tag] = False
            elif isinstance(result, BaseException):
                raise result
            else:
                status[tag] = True
        return status
