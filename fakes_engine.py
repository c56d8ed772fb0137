"""
假的 sing-box 引擎 - 在测试中模拟崩溃、慢启动、拒绝退出和日志洪泛
"""
import itertools
import queue
import threading
from typing import Iterable, Iterator, List, Optional

from singbox_gui.core.engine import EngineLauncher, EngineProcess

_pids = itertools.count(40000)
_EOF = object()


class FakeStream:
    """进程退出后结束的行迭代器"""

    def __init__(self, lines: Iterable[str] = ()):
        self._queue: "queue.Queue" = queue.Queue()
        for line in lines:
            self._queue.put(line)

    def put(self, line: str) -> None:
        self._queue.put(line)

    def close(self) -> None:
        self._queue.put(_EOF)

    def __iter__(self) -> Iterator[str]:
        while True:
            item = self._queue.get()
            if item is _EOF:
                return
            yield item


class FakeProcess(EngineProcess):
    """
    假的引擎进程

    Args:
        stdout_lines: 启动后立即输出的标准输出行
        stderr_lines: 启动后立即输出的标准错误行
        exit_after: 多少秒后自行退出，None 表示一直运行
        exit_code: 自行退出时的退出码
        ignore_terminate: 忽略优雅终止信号，只能被 kill_tree() 终止
    """

    def __init__(self,
                 stdout_lines: Iterable[str] = (),
                 stderr_lines: Iterable[str] = (),
                 exit_after: Optional[float] = None,
                 exit_code: int = 1,
                 ignore_terminate: bool = False):
        self._pid = next(_pids)
        self._stdout = FakeStream(stdout_lines)
        self._stderr = FakeStream(stderr_lines)
        self._exit_code: Optional[int] = None
        self._exited = threading.Event()
        self._lock = threading.Lock()
        self.ignore_terminate = ignore_terminate
        self.terminate_calls = 0
        self.killed = False

        if exit_after is not None:
            timer = threading.Timer(exit_after, self.exit, args=(exit_code,))
            timer.daemon = True
            timer.start()

    @property
    def pid(self) -> int:
        return self._pid

    @property
    def stdout(self) -> Iterable[str]:
        return self._stdout

    @property
    def stderr(self) -> Iterable[str]:
        return self._stderr

    def emit(self, line: str, stream: str = "stdout") -> None:
        """输出一行日志"""
        (self._stdout if stream == "stdout" else self._stderr).put(line)

    def exit(self, code: int = 1) -> None:
        """进程退出（模拟崩溃或正常结束）"""
        with self._lock:
            if self._exited.is_set():
                return
            self._exit_code = code
            self._stdout.close()
            self._stderr.close()
            self._exited.set()

    def poll(self) -> Optional[int]:
        return self._exit_code if self._exited.is_set() else None

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        if self._exited.wait(timeout):
            return self._exit_code
        return None

    def terminate(self) -> None:
        self.terminate_calls += 1
        if not self.ignore_terminate:
            self.exit(0)

    def kill_tree(self) -> None:
        self.killed = True
        self.exit(-9)


class FakeLauncher(EngineLauncher):
    """
    假的引擎启动器，每次 launch() 创建一个 FakeProcess

    Args:
        launch_error: launch() 时抛出的异常（模拟找不到可执行文件）
        其余参数原样传给 FakeProcess
    """

    def __init__(self, launch_error: Optional[OSError] = None, **process_kwargs):
        self.launch_error = launch_error
        self.process_kwargs = process_kwargs
        self.config_paths: List[str] = []
        self.processes: List[FakeProcess] = []

    @property
    def launch_count(self) -> int:
        return len(self.processes)

    @property
    def last_process(self) -> Optional[FakeProcess]:
        return self.processes[-1] if self.processes else None

    def launch(self, config_path: str) -> EngineProcess:
        self.config_paths.append(config_path)
        if self.launch_error is not None:
            raise self.launch_error
        process = FakeProcess(**self.process_kwargs)
        self.processes.append(process)
        return process
