"""
即時事件匯流排

發布-訂閱模式，執行緒安全：
- 同步 listener（測試、log 用）
- asyncio.Queue subscriber（WebSocket 連線用，透過 call_soon_threadsafe 投遞）

業務程式通常在 transaction 內發布事件；傳入 db 時事件會先暫存在
session 上，等 commit 成功後才真正送出，rollback 則直接丟棄。
"""
import asyncio
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Callable, Deque, Dict, List, Optional

from sqlalchemy import event
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

# 前端訂閱的事件名稱
ROUND_OPENED = "roundOpened"
ROUND_STATE_CHANGED = "roundStateChanged"
ROUND_SETTLED = "roundSettled"
TOTALS_UPDATED = "totalsUpdated"
BET_PLACED = "betPlaced"
BET_CANCELLED = "betCancelled"
WALLET_UPDATED = "walletUpdated"

_PENDING_KEY = "pending_events"


@dataclass
class Event:
    name: str
    data: Dict[str, Any]
    user_id: Optional[str] = None  # None 表示廣播

    def to_message(self) -> Dict[str, Any]:
        return {"event": self.name, "data": self.data}


@dataclass
class Subscription:
    subscription_id: str
    queue: asyncio.Queue
    loop: asyncio.AbstractEventLoop
    user_id: Optional[str] = None

    def wants(self, evt: Event) -> bool:
        return evt.user_id is None or evt.user_id == self.user_id


@dataclass
class _Listener:
    listener_id: str
    handler: Callable[[Event], None]
    filter_name: Optional[str] = field(default=None)


class EventBus:
    """事件匯流排"""

    def __init__(self, history_size: int = 200):
        self._lock = Lock()
        self._subscriptions: Dict[str, Subscription] = {}
        self._listeners: Dict[str, _Listener] = {}
        self._history: Deque[Event] = deque(maxlen=history_size)

    # ---------- 訂閱 ----------

    def subscribe(self, user_id: Optional[str] = None, maxsize: int = 1000) -> Subscription:
        """在目前的 event loop 上建立一個 queue 訂閱（WebSocket 用）"""
        sub = Subscription(
            subscription_id=str(uuid.uuid4()),
            queue=asyncio.Queue(maxsize=maxsize),
            loop=asyncio.get_running_loop(),
            user_id=user_id,
        )
        with self._lock:
            self._subscriptions[sub.subscription_id] = sub
        return sub

    def add_listener(self, handler: Callable[[Event], None], event_name: Optional[str] = None) -> str:
        listener = _Listener(listener_id=str(uuid.uuid4()), handler=handler, filter_name=event_name)
        with self._lock:
            self._listeners[listener.listener_id] = listener
        return listener.listener_id

    def unsubscribe(self, subscription_id: str) -> bool:
        with self._lock:
            removed = self._subscriptions.pop(subscription_id, None)
            if removed is None:
                removed = self._listeners.pop(subscription_id, None)
        return removed is not None

    # ---------- 發布 ----------

    def publish(self, name: str, data: Dict[str, Any], user_id: Optional[str] = None,
                db: Optional[Session] = None) -> None:
        """
        發布事件

        參數：
            name: 事件名稱（例如 roundSettled）
            data: JSON 可序列化的 payload
            user_id: 只送給特定使用者；None 表示廣播
            db: 若在 transaction 內，傳入 session，commit 後才送出
        """
        evt = Event(name=name, data=data, user_id=user_id)
        if db is not None:
            db.info.setdefault(_PENDING_KEY, []).append(evt)
            return
        self._dispatch(evt)

    def _dispatch(self, evt: Event) -> None:
        with self._lock:
            self._history.append(evt)
            listeners = list(self._listeners.values())
            subscriptions = list(self._subscriptions.values())

        for listener in listeners:
            if listener.filter_name and listener.filter_name != evt.name:
                continue
            try:
                listener.handler(evt)
            except Exception as e:
                logger.error(f"Event listener failed for {evt.name}: {e}", exc_info=True)

        message = evt.to_message()
        for sub in subscriptions:
            if not sub.wants(evt):
                continue
            try:
                sub.loop.call_soon_threadsafe(self._offer, sub, message)
            except RuntimeError:
                # loop 已關閉，連線已經不在了
                self.unsubscribe(sub.subscription_id)

    @staticmethod
    def _offer(sub: Subscription, message: Dict[str, Any]) -> None:
        try:
            sub.queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning(f"Dropping event for slow subscriber {sub.subscription_id}")

    def flush_session(self, db: Session) -> None:
        for evt in db.info.pop(_PENDING_KEY, []):
            self._dispatch(evt)

    def discard_session(self, db: Session) -> None:
        db.info.pop(_PENDING_KEY, None)

    # ---------- 查詢 ----------

    def recent(self, name: Optional[str] = None) -> List[Event]:
        with self._lock:
            events = list(self._history)
        if name:
            events = [e for e in events if e.name == name]
        return events

    def clear_history(self) -> None:
        with self._lock:
            self._history.clear()


event_bus = EventBus()


@event.listens_for(Session, "after_commit")
def _flush_events_after_commit(session):
    event_bus.flush_session(session)


@event.listens_for(Session, "after_rollback")
def _discard_events_after_rollback(session):
    event_bus.discard_session(session)
