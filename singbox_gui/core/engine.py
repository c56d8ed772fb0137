"""
引擎进程抽象 - 将 sing-box 可执行文件隔离在接口之后

测试可以用假的启动器模拟崩溃、慢启动和日志洪泛，而不需要真实的可执行文件。
"""
import logging
import os
import subprocess
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from .process_monitor import process_monitor


class EngineProcess(ABC):
    """一个正在运行的引擎进程"""

    @property
    @abstractmethod
    def pid(self) -> int:
        """进程ID"""

    @property
    @abstractmethod
    def stdout(self) -> Iterable[str]:
        """标准输出行迭代器，进程退出后结束"""

    @property
    @abstractmethod
    def stderr(self) -> Iterable[str]:
        """标准错误行迭代器，进程退出后结束"""

    @abstractmethod
    def poll(self) -> Optional[int]:
        """返回退出码，仍在运行返回 None"""

    @abstractmethod
    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        """
        等待进程退出

        Args:
            timeout: 最长等待时间（秒），None 表示一直等待

        Returns:
            退出码，超时返回 None
        """

    @abstractmethod
    def terminate(self) -> None:
        """发送优雅终止信号"""

    @abstractmethod
    def kill_tree(self) -> None:
        """强制终止整个进程树"""


class EngineLauncher(ABC):
    """引擎启动器"""

    @abstractmethod
    def launch(self, config_path: str) -> EngineProcess:
        """
        以指定配置启动引擎

        Raises:
            OSError: 可执行文件不存在或无权限执行
        """


class SubprocessEngineProcess(EngineProcess):
    """基于 subprocess.Popen 的引擎进程"""

    def __init__(self, process: subprocess.Popen):
        self._process = process

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def stdout(self) -> Iterable[str]:
        return self._process.stdout

    @property
    def stderr(self) -> Iterable[str]:
        return self._process.stderr

    def poll(self) -> Optional[int]:
        return self._process.poll()

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        try:
            return self._process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return None

    def terminate(self) -> None:
        try:
            self._process.terminate()
        except ProcessLookupError:
            pass  # 已退出

    def kill_tree(self) -> None:
        if not process_monitor.kill_process_tree(self._process.pid):
            self._process.kill()


class SubprocessLauncher(EngineLauncher):
    """启动 sing-box 可执行文件"""

    def __init__(self, engine_path: str, working_dir: Optional[str] = None):
        """
        Args:
            engine_path: sing-box 可执行文件路径
            working_dir: 工作目录，默认为可执行文件所在目录
        """
        self.engine_path = engine_path
        self.working_dir = working_dir or os.path.dirname(os.path.abspath(engine_path))
        self.logger = logging.getLogger(__name__)

    def build_command(self, config_path: str) -> List[str]:
        return [self.engine_path, "run", "-c", config_path]

    def launch(self, config_path: str) -> EngineProcess:
        kwargs = {}
        if os.name == "nt":
            # 隐藏控制台窗口
            startupinfo = subprocess.STARTUPINFO()
            startupinfo.dwFlags |= subprocess.STARTF_USESHOWWINDOW
            startupinfo.wShowWindow = subprocess.SW_HIDE
            kwargs["startupinfo"] = startupinfo
            kwargs["creationflags"] = subprocess.CREATE_NO_WINDOW

        command = self.build_command(config_path)
        self.logger.info(f"Launching engine: {' '.join(command)}")

        process = subprocess.Popen(
            command,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=self.working_dir,
            encoding="utf-8",
            errors="replace",
            bufsize=1,
            **kwargs
        )
        return SubprocessEngineProcess(process)

    def kill_stale_processes(self) -> int:
        """终止上次运行遗留的引擎进程"""
        killed_count = process_monitor.kill_processes_by_exe(self.engine_path)
        if killed_count > 0:
            self.logger.info(f"Killed {killed_count} stale sing-box processes")
        return killed_count
