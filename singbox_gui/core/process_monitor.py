"""
进程监控器 - 检查进程状态、终止进程树、清理残留引擎进程
"""
import logging
import os
from dataclasses import dataclass
from typing import List, Optional

import psutil


@dataclass
class ProcessInfo:
    """进程信息"""
    pid: int
    name: str
    exe: str
    cmdline: List[str]
    parent_pid: Optional[int] = None


class ProcessMonitor:
    """进程监控器"""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def is_process_running(self, pid: int) -> bool:
        """
        检查进程是否正在运行

        Args:
            pid: 进程ID

        Returns:
            进程是否正在运行（僵尸进程视为已退出）
        """
        try:
            proc = psutil.Process(pid)
            return proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            return False

    def find_processes_by_exe(self, exe_path: str) -> List[ProcessInfo]:
        """
        根据可执行文件路径查找进程

        Args:
            exe_path: 可执行文件路径

        Returns:
            匹配的进程列表
        """
        processes = []
        exe_path = os.path.normcase(os.path.abspath(exe_path))

        for proc in psutil.process_iter(['pid', 'name', 'exe', 'cmdline', 'ppid']):
            try:
                proc_info = proc.info
                proc_exe = proc_info.get('exe') or ''
                if proc_exe and os.path.normcase(os.path.abspath(proc_exe)) == exe_path:
                    processes.append(ProcessInfo(
                        pid=proc_info['pid'],
                        name=proc_info.get('name') or '',
                        exe=proc_exe,
                        cmdline=proc_info.get('cmdline') or [],
                        parent_pid=proc_info.get('ppid'),
                    ))
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue

        return processes

    def kill_process_tree(self, pid: int, timeout: float = 2.0) -> bool:
        """
        强制终止进程及其所有子进程

        Args:
            pid: 根进程ID
            timeout: 等待进程退出的时间（秒）

        Returns:
            是否全部终止
        """
        try:
            root = psutil.Process(pid)
            procs = root.children(recursive=True)
            procs.append(root)
        except psutil.NoSuchProcess:
            return True  # 进程已经不存在

        for proc in procs:
            try:
                proc.kill()
            except psutil.NoSuchProcess:
                continue
            except psutil.AccessDenied as e:
                self.logger.error(f"Access denied killing process {proc.pid}: {e}")

        _, alive = psutil.wait_procs(procs, timeout=timeout)
        for proc in alive:
            self.logger.error(f"Process {proc.pid} still alive after kill")
        return not alive

    def kill_processes_by_exe(self, exe_path: str) -> int:
        """
        终止所有由指定可执行文件启动的进程（上次崩溃遗留的引擎）

        Args:
            exe_path: 可执行文件路径

        Returns:
            成功终止的进程数量
        """
        killed_count = 0
        for proc_info in self.find_processes_by_exe(exe_path):
            if proc_info.pid == os.getpid():
                continue
            if self.kill_process_tree(proc_info.pid):
                killed_count += 1
                self.logger.info(f"Killed process {proc_info.name} (PID: {proc_info.pid})")
        return killed_count


# 全局进程监控器实例
process_monitor = ProcessMonitor()
