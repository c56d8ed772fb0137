"""
sing-box 服务管理器 - 管理引擎进程的生命周期

状态转换:
    STOPPED -> STARTING -> RUNNING -> STOPPING -> STOPPED
    RUNNING -> CRASHED -> STOPPED      （运行中意外退出）
    STARTING -> STOPPED                （启动宽限期内退出，视为启动失败）
"""
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional

from .config_generator import save_config
from .engine import EngineLauncher, EngineProcess
from .error_handler import (
    ErrorCategory,
    ErrorHandler,
    describe_engine_exit,
    explain_engine_line,
    global_error_handler,
    translate_engine_error,
)
from .events import EventBus, FatalError, Log, LogRecord, Started, Stopped
from .exceptions import StartupFailedError
from .log_processor import LogProcessor

# 读取线程在进程退出后排空输出的最长等待时间
READER_JOIN_TIMEOUT = 2.0


class ServiceState(Enum):
    """服务状态枚举"""
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    CRASHED = "crashed"


@dataclass
class StatusSnapshot:
    """服务状态快照"""
    state: ServiceState
    pid: Optional[int] = None
    uptime: Optional[float] = None
    last_error: Optional[str] = None


class SingBoxService:
    """sing-box 进程管理器"""

    def __init__(self,
                 engine: EngineLauncher,
                 config_path: str,
                 event_bus: Optional[EventBus] = None,
                 startup_grace: float = 1.0,
                 stop_timeout: float = 5.0,
                 error_handler: Optional[ErrorHandler] = None):
        """
        初始化服务管理器

        Args:
            engine: 引擎启动器
            config_path: 引擎配置文件写入路径
            event_bus: 事件总线，默认新建
            startup_grace: 启动宽限期（秒），进程存活超过该时间才算启动成功
            stop_timeout: 优雅停止的最长等待时间（秒），超时后强制终止进程树
            error_handler: 错误处理器，默认使用全局实例
        """
        self.engine = engine
        self.config_path = config_path
        self.event_bus = event_bus or EventBus()
        self.startup_grace = startup_grace
        self.stop_timeout = stop_timeout
        self.error_handler = error_handler or global_error_handler
        self.logger = logging.getLogger(__name__)

        # 串行化 start/stop/restart
        self._op_lock = threading.RLock()
        # 保护下面的状态字段（监视线程也会修改）
        self._state_lock = threading.Lock()

        self._state = ServiceState.STOPPED
        self._process: Optional[EngineProcess] = None
        self._document: Optional[dict] = None
        self._started_at: Optional[float] = None
        self._last_error: Optional[str] = None

        self._log_processor = LogProcessor()
        self._reader_threads: List[threading.Thread] = []
        self._watcher_thread: Optional[threading.Thread] = None

    @property
    def state(self) -> ServiceState:
        with self._state_lock:
            return self._state

    def is_running(self) -> bool:
        """检查服务是否运行中"""
        return self.state == ServiceState.RUNNING

    def get_status(self) -> StatusSnapshot:
        """获取状态快照（只读取内部状态，不查询系统）"""
        with self._state_lock:
            pid = None
            uptime = None
            if self._process is not None and self._state == ServiceState.RUNNING:
                pid = self._process.pid
                if self._started_at is not None:
                    uptime = time.monotonic() - self._started_at
            return StatusSnapshot(
                state=self._state,
                pid=pid,
                uptime=uptime,
                last_error=self._last_error,
            )

    def get_status_text(self) -> str:
        """获取状态文本"""
        status = self.get_status()
        texts = {
            ServiceState.STOPPED: "已停止",
            ServiceState.STARTING: "启动中",
            ServiceState.RUNNING: "运行中",
            ServiceState.STOPPING: "停止中",
            ServiceState.CRASHED: "已崩溃",
        }
        text = texts[status.state]
        if status.state == ServiceState.STOPPED and status.last_error:
            text += f" ({status.last_error})"
        return text

    def start(self, document: dict) -> None:
        """
        写入配置并启动 sing-box

        运行中再次调用不会启动第二个进程：配置相同时直接返回，
        配置不同时记录警告后返回，需要调用方使用 restart()。

        Args:
            document: 编译好的引擎配置

        Raises:
            StartupFailedError: 进程无法启动或在宽限期内退出
        """
        with self._op_lock:
            with self._state_lock:
                state = self._state
                current_document = self._document

            if state == ServiceState.RUNNING:
                if document != current_document:
                    self.logger.warning("sing-box is already running with a different config, "
                                        "call restart() to apply it")
                return

            self._wait_for_watcher()
            self._launch(document)

    def stop(self) -> None:
        """
        停止 sing-box

        先发送终止信号，超时后强制终止整个进程树，无论哪种路径最终都进入 STOPPED。
        """
        with self._op_lock:
            with self._state_lock:
                state = self._state
                process = self._process
                if state == ServiceState.RUNNING:
                    self._state = ServiceState.STOPPING

            if state != ServiceState.RUNNING or process is None:
                # 已停止，或崩溃处理仍在进行
                self._wait_for_watcher()
                return

            self.logger.info(f"Stopping sing-box (PID: {process.pid})")
            self._terminate(process)
            self._join_readers()
            self._publish_records(self._log_processor.flush())

            with self._state_lock:
                self._state = ServiceState.STOPPED
                self._process = None
                self._started_at = None

            self._wait_for_watcher()
            self.event_bus.publish(Stopped())
            self.logger.info("sing-box stopped")

    def restart(self, document: dict) -> None:
        """
        重启 sing-box（先停止再启动，中间可以观察到 STOPPED 状态）

        Raises:
            StartupFailedError: 新进程启动失败
        """
        with self._op_lock:
            self.stop()
            self.start(document)

    def _launch(self, document: dict) -> None:
        try:
            save_config(document, self.config_path)
        except OSError as e:
            message = f"无法写入配置文件 {self.config_path}: {e}"
            self._record_startup_failure(message)
            raise StartupFailedError(None, message) from e

        self._log_processor.reset()
        with self._state_lock:
            self._state = ServiceState.STARTING
            self._last_error = None

        try:
            process = self.engine.launch(self.config_path)
        except OSError as e:
            message = self._describe_launch_error(e)
            with self._state_lock:
                self._state = ServiceState.STOPPED
            self._record_startup_failure(message)
            raise StartupFailedError(None, message) from e

        with self._state_lock:
            self._process = process
        self.logger.info(f"sing-box process spawned (PID: {process.pid})")
        self._start_readers(process)

        exit_code = process.wait(self.startup_grace)
        if exit_code is not None:
            self._join_readers()
            self._publish_records(self._log_processor.flush())
            last_line = self._log_processor.last_line
            with self._state_lock:
                self._state = ServiceState.STOPPED
                self._process = None
            message = describe_engine_exit(exit_code, last_line)
            self._record_startup_failure(message, exit_code, last_line)
            raise StartupFailedError(exit_code, last_line, message)

        with self._state_lock:
            self._state = ServiceState.RUNNING
            self._document = document
            self._started_at = time.monotonic()

        self._watcher_thread = threading.Thread(
            target=self._watch_process, args=(process,), name="sing-box-watcher", daemon=True
        )
        self._watcher_thread.start()

        self.event_bus.publish(Started(pid=process.pid))
        self.logger.info(f"sing-box started (PID: {process.pid})")

    def _terminate(self, process: EngineProcess) -> None:
        try:
            process.terminate()
        except OSError as e:
            self.logger.warning(f"Failed to send terminate signal: {e}")

        if process.wait(self.stop_timeout) is not None:
            return

        self.logger.warning(f"sing-box did not exit within {self.stop_timeout}s, killing process tree")
        self.error_handler.handle_error(
            category=ErrorCategory.ENGINE_PROCESS,
            code="engine_shutdown_timeout",
            context={"pid": process.pid, "stop_timeout": self.stop_timeout}
        )
        process.kill_tree()
        if process.wait(self.stop_timeout) is None:
            self.logger.error(f"sing-box (PID: {process.pid}) still alive after kill")

    def _watch_process(self, process: EngineProcess) -> None:
        """等待进程退出，运行中的意外退出按崩溃处理"""
        exit_code = process.wait()

        with self._state_lock:
            if self._process is not process or self._state != ServiceState.RUNNING:
                return  # 正常停止
            self._state = ServiceState.CRASHED

        self._join_readers()
        self._publish_records(self._log_processor.flush())

        last_line = self._log_processor.last_line
        message = f"sing-box 进程意外退出 (退出码: {exit_code})"
        if last_line:
            message += f": {explain_engine_line(last_line)}"

        self.logger.error(f"sing-box exited unexpectedly with code {exit_code}")
        self.error_handler.handle_error(
            category=ErrorCategory.ENGINE_PROCESS,
            code="engine_process_unexpected_exit",
            details=last_line or None,
            context={"pid": process.pid, "exit_code": exit_code}
        )

        with self._state_lock:
            self._last_error = message
        self.event_bus.publish(FatalError(message=message))

        with self._state_lock:
            self._state = ServiceState.STOPPED
            self._process = None
            self._started_at = None
        self.event_bus.publish(Stopped())

    def _wait_for_watcher(self) -> None:
        watcher = self._watcher_thread
        if watcher is not None and watcher is not threading.current_thread():
            watcher.join(self.stop_timeout + 2 * READER_JOIN_TIMEOUT)
            if watcher.is_alive():
                self.logger.warning("sing-box watcher thread did not finish")
        self._watcher_thread = None

    def _start_readers(self, process: EngineProcess) -> None:
        self._reader_threads = []
        for name, stream in (("stdout", process.stdout), ("stderr", process.stderr)):
            if stream is None:
                continue
            thread = threading.Thread(
                target=self._read_stream, args=(stream,), name=f"sing-box-{name}", daemon=True
            )
            thread.start()
            self._reader_threads.append(thread)

    def _join_readers(self) -> None:
        for thread in list(self._reader_threads):
            if thread is not threading.current_thread():
                thread.join(READER_JOIN_TIMEOUT)

    def _read_stream(self, stream: Iterable[str]) -> None:
        try:
            for line in stream:
                self._handle_line(line)
        except (OSError, ValueError) as e:
            self.logger.debug(f"Engine output stream closed: {e}")

    def _handle_line(self, line: str) -> None:
        records, fatal_message = self._log_processor.feed(line)
        self._publish_records(records)

        # 启动阶段的错误通过 StartupFailedError 返回，不重复通知
        if fatal_message and self.state != ServiceState.STARTING:
            message = explain_engine_line(fatal_message)
            with self._state_lock:
                self._last_error = message
            self.event_bus.publish(FatalError(message=message))

    def _publish_records(self, records: List[LogRecord]) -> None:
        for record in records:
            self.event_bus.publish(Log(record=record))

    def _record_startup_failure(self, message: str, exit_code: Optional[int] = None, last_line: str = "") -> None:
        with self._state_lock:
            self._last_error = message
        self.error_handler.handle_error(
            category=ErrorCategory.ENGINE_PROCESS,
            code="engine_process_start_failed",
            details=last_line or message,
            context={"exit_code": exit_code, "config_path": self.config_path}
        )

    @staticmethod
    def _describe_launch_error(error: OSError) -> str:
        if isinstance(error, FileNotFoundError):
            return "找不到 sing-box 可执行文件，请检查安装是否完整"
        if isinstance(error, PermissionError):
            return "sing-box 可执行文件没有执行权限，或需要管理员权限"
        return f"启动 sing-box 进程失败: {translate_engine_error(str(error)) or error}"
