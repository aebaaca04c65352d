"""
事件广播器 (Event Broadcaster)

采集/告警/自愈核心只依赖 Notifier 协议的 notify(event, payload)；
观察者注册表由传输层持有。EventBroadcaster 是基于内存队列的默认实现，
每个观察者一个 asyncio.Queue，队列满时丢弃（不保证投递）。

事件名：metrics, containers, alert, alert_resolved, healing, backup。
"""
import asyncio
import logging
from typing import List, Protocol

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """核心向观察者发送事件的唯一接口。"""

    def notify(self, event: str, payload: dict) -> None:
        ...


class EventBroadcaster:
    """
    基于内存队列实现的发布-订阅，向多个观察者（SSE/WebSocket 连接等）推送事件。
    """

    def __init__(self, maxsize: int = 100):
        self._maxsize = maxsize
        self._subscribers: List[asyncio.Queue] = []

    def register(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._maxsize)
        self._subscribers.append(queue)
        return queue

    def unregister(self, queue: asyncio.Queue):
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def broadcast(self, message: dict):
        for queue in self._subscribers:
            try:
                queue.put_nowait(message)
            except asyncio.QueueFull:
                logger.debug("Observer queue full, dropping %s event", message.get("event"))

    def notify(self, event: str, payload: dict) -> None:
        self.broadcast({"event": event, "data": payload})

    @property
    def observer_count(self) -> int:
        return len(self._subscribers)


class NullNotifier:
    """不向任何观察者发送事件。"""

    def notify(self, event: str, payload: dict) -> None:
        pass


event_broadcaster = EventBroadcaster()
