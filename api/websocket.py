"""
Display WebSocket Endpoint

display 開機後連上 /ws/display/{display_id}，之後：
- 收到 session_ready / game_start（由 BroadcastCoordinator 推送）
- 動畫結束時送 {"type": "game_complete", "sessionId": ...}
- 每隔一段時間送 {"type": "ping"}，回 {"type": "pong"}
"""
import json
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool

from core.broadcast import BroadcastCoordinator, get_broadcaster
from core.exceptions import SessionNotFound
from core.session_manager import SessionManager
from database import SessionLocal

router = APIRouter(tags=["websocket"])
logger = logging.getLogger(__name__)


def _complete_from_display(display_id: str, session_id: str) -> None:
    """在 threadpool 執行：每次回報用自己的 db session；只接受屬於這台 display 的 session"""
    db = SessionLocal()
    try:
        session = SessionManager.get_session(db, session_id)
        if session.display_id != display_id:
            logger.warning(
                f"Display {display_id} reported completion for session {session_id} "
                f"owned by display {session.display_id}, ignored"
            )
            return
        result = SessionManager.report_completion(db, session_id)
        if result.first_transition:
            logger.info(f"Session {session_id} marked as completed by display")
    except SessionNotFound:
        logger.warning(f"Display reported completion for unknown session {session_id}, ignored")
    finally:
        db.close()


@router.websocket("/ws/display/{display_id}")
async def display_channel(websocket: WebSocket, display_id: str,
                          broadcaster: BroadcastCoordinator = Depends(get_broadcaster)):
    await websocket.accept()
    broadcaster.register(display_id, websocket)

    try:
        await websocket.send_json({"type": "connected", "displayId": display_id})

        while True:
            raw = await websocket.receive_text()
            try:
                data = json.loads(raw)
            except ValueError:
                logger.warning(f"Malformed message from display {display_id}: {raw[:200]!r}")
                continue
            if not isinstance(data, dict):
                logger.warning(f"Unexpected message shape from display {display_id}")
                continue

            message_type = data.get("type")
            if message_type == "game_complete":
                session_id = data.get("sessionId")
                if not session_id:
                    logger.warning(f"game_complete without sessionId from display {display_id}")
                    continue
                try:
                    await run_in_threadpool(_complete_from_display, display_id, str(session_id))
                except Exception as e:
                    # 連線不能因為一次回報失敗而斷掉；session 之後由 HTTP fallback 或 sweeper 收尾
                    logger.error(f"Failed to complete session {session_id}: {e}", exc_info=True)
            elif message_type == "ping":
                await websocket.send_json({"type": "pong"})
            else:
                logger.info(f"Ignoring message type {message_type!r} from display {display_id}")

    except WebSocketDisconnect:
        pass
    finally:
        broadcaster.unregister(display_id, websocket)
