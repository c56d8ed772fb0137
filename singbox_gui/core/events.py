"""
引擎事件定义和事件总线
"""
import logging
import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Union


@dataclass
class LogRecord:
    """一条引擎日志"""
    timestamp: datetime
    level: str
    message: str
    source: str = "sing-box"
    stack: Optional[str] = None

    def format(self) -> str:
        """格式化为 [时间] [级别] [来源] 消息"""
        text = (f"[{self.timestamp:%Y-%m-%d %H:%M:%S}] "
                f"[{self.level.upper()}] [{self.source}] {self.message}")
        if self.stack:
            text += f"\n{self.stack}"
        return text


@dataclass
class Started:
    pid: int
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class Stopped:
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class Log:
    record: LogRecord


@dataclass
class FatalError:
    """需要用户关注的错误（致命日志或进程意外退出）"""
    message: str
    timestamp: datetime = field(default_factory=datetime.now)


EngineEvent = Union[Started, Stopped, Log, FatalError]


class EventBus:
    """
    事件总线

    publish() 只把事件放入无界队列，回调在独立的分发线程中执行，
    发布方（日志读取线程）永远不会被订阅者阻塞。
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._subscribers: List[Callable[[EngineEvent], None]] = []
        self._subscribers_lock = threading.Lock()
        self._queue: "queue.Queue[Optional[EngineEvent]]" = queue.Queue()
        self._dispatcher: Optional[threading.Thread] = None
        self._dispatcher_lock = threading.Lock()

    def subscribe(self, callback: Callable[[EngineEvent], None]) -> None:
        """注册事件回调"""
        with self._subscribers_lock:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[EngineEvent], None]) -> None:
        """注销事件回调"""
        with self._subscribers_lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def publish(self, event: EngineEvent) -> None:
        """发布事件（不阻塞）"""
        self._ensure_dispatcher()
        self._queue.put(event)

    def flush(self, timeout: float = 5.0) -> bool:
        """
        等待已发布的事件全部分发完毕

        Args:
            timeout: 最长等待时间（秒）

        Returns:
            是否在超时前完成
        """
        done = threading.Event()
        self._ensure_dispatcher()
        self._queue.put(_FlushMarker(done))
        return done.wait(timeout)

    def close(self, timeout: float = 5.0) -> None:
        """停止分发线程，已入队的事件仍会被分发"""
        with self._dispatcher_lock:
            dispatcher = self._dispatcher
            self._dispatcher = None
        if dispatcher is None:
            return
        self._queue.put(None)
        dispatcher.join(timeout)

    def _ensure_dispatcher(self) -> None:
        with self._dispatcher_lock:
            if self._dispatcher is None or not self._dispatcher.is_alive():
                self._dispatcher = threading.Thread(
                    target=self._dispatch_loop, name="engine-event-bus", daemon=True
                )
                self._dispatcher.start()

    def _dispatch_loop(self) -> None:
        while True:
            event = self._queue.get()
            if event is None:
                break
            if isinstance(event, _FlushMarker):
                event.done.set()
                continue

            with self._subscribers_lock:
                subscribers = list(self._subscribers)
            for callback in subscribers:
                try:
                    callback(event)
                except Exception as e:
                    self.logger.error(f"Error in event subscriber: {e}")


class _FlushMarker:
    def __init__(self, done: threading.Event):
        self.done = done
