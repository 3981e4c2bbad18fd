"""
WebSocket：即時事件推播

連線：/ws?token=<access token>
- 有 token：收到廣播事件 + 自己的 walletUpdated
- 沒有 token：只收到廣播事件

訊息格式：{"event": "<名稱>", "data": {...}}
客戶端送 "ping" 會收到 {"event": "pong"}。
"""
import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from sqlalchemy.orm import Session

from database import get_db
from api.deps import user_from_token
from core.events import event_bus
from core.exceptions import ForexSpinException

router = APIRouter(tags=["websocket"])
logger = logging.getLogger(__name__)


async def _pump_events(websocket: WebSocket, queue: asyncio.Queue) -> None:
    while True:
        message = await queue.get()
        await websocket.send_json(message)


async def _read_client(websocket: WebSocket) -> None:
    while True:
        text = await websocket.receive_text()
        if text.strip().lower() == "ping":
            await websocket.send_json({"event": "pong", "data": {}})


@router.websocket("/ws")
async def events_socket(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    user_id = None
    if token:
        try:
            user_id = user_from_token(db, token).id
        except ForexSpinException as e:
            logger.warning(f"Rejected websocket connection: {e.message}")
            await websocket.close(code=4401)
            return
        finally:
            db.close()

    await websocket.accept()
    subscription = event_bus.subscribe(user_id=user_id)
    logger.info(f"WebSocket connected (user={user_id}, subscription={subscription.subscription_id})")

    tasks = []
    try:
        await websocket.send_json({"event": "connected", "data": {"userId": user_id}})
        tasks = [
            asyncio.create_task(_pump_events(websocket, subscription.queue)),
            asyncio.create_task(_read_client(websocket)),
        ]
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.error(f"WebSocket error for user {user_id}: {exc}", exc_info=exc)
    except WebSocketDisconnect:
        pass
    finally:
        for task in tasks:
            task.cancel()
        event_bus.unsubscribe(subscription.subscription_id)
        logger.info(f"WebSocket disconnected (subscription={subscription.subscription_id})")
