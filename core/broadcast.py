"""
Broadcast Coordinator：每台 display 的即時訊息分送

職責：
1. 登記 / 移除 display 的 WebSocket 連線（一台 display 可以有多條連線）
2. 把訊息送給該 display 目前所有在線的連線

規則：
- 沒有連線時只記 log，不排隊、不補送
- display 離線期間錯過的事件，重新連線後自行用 GET /api/session/{id} 補狀態
- 送失敗的連線直接移除
"""
from functools import lru_cache
from typing import Any, Dict, List, Optional, Set
import asyncio
import logging
import threading

logger = logging.getLogger(__name__)


class BroadcastCoordinator:
    """連線登記表，只透過方法存取，不直接暴露內部的 dict"""

    def __init__(self):
        self._connections: Dict[str, Set[Any]] = {}
        self._lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def register(self, display_id: str, connection) -> None:
        """
        登記一條連線

        必須在 event loop 內呼叫（WebSocket handler），
        同步程式碼之後透過 publish() 把訊息丟回這個 loop
        """
        with self._lock:
            self._connections.setdefault(display_id, set()).add(connection)
            count = len(self._connections[display_id])
        try:
            self._loop = asyncio.get_running_loop()
        except RuntimeError:
            pass
        logger.info(f"Display {display_id} connected ({count} live connection(s))")

    def unregister(self, display_id: str, connection) -> None:
        with self._lock:
            connections = self._connections.get(display_id)
            if connections is None:
                return
            connections.discard(connection)
            if not connections:
                del self._connections[display_id]
        logger.info(f"Display {display_id} disconnected")

    def connections_for(self, display_id: str) -> List[Any]:
        """回傳快照，迭代時不受其他執行緒增刪影響"""
        with self._lock:
            return list(self._connections.get(display_id, ()))

    def connection_count(self, display_id: Optional[str] = None) -> int:
        with self._lock:
            if display_id is not None:
                return len(self._connections.get(display_id, ()))
            return sum(len(c) for c in self._connections.values())

    async def broadcast(self, display_id: str, message: Dict[str, Any]) -> int:
        """
        把訊息送給 display 的所有連線

        返回：
            成功送出的連線數
        """
        connections = self.connections_for(display_id)
        if not connections:
            logger.info(f"No connections for display {display_id}, dropped {message.get('type')}")
            return 0

        delivered = 0
        for connection in connections:
            try:
                await connection.send_json(message)
                delivered += 1
            except Exception as e:
                logger.warning(f"Dropping dead connection for display {display_id}: {e}")
                self.unregister(display_id, connection)

        logger.info(f"Broadcast {message.get('type')} to display {display_id} ({delivered} connection(s))")
        return delivered

    def publish(self, display_id: str, message: Dict[str, Any]) -> bool:
        """
        同步程式碼（API endpoint / manager）用的 fire-and-forget 版本

        返回：
            True 表示已排入 event loop；沒有連線或沒有 loop 時回傳 False
        """
        if not self.connections_for(display_id):
            logger.info(f"No connections for display {display_id}, dropped {message.get('type')}")
            return False

        loop = self._loop
        if loop is None or loop.is_closed():
            logger.warning(f"No event loop available to deliver {message.get('type')} to {display_id}")
            return False

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            loop.create_task(self.broadcast(display_id, message))
        else:
            asyncio.run_coroutine_threadsafe(self.broadcast(display_id, message), loop)
        return True


@lru_cache()
def get_broadcaster() -> BroadcastCoordinator:
    """FastAPI dependency：整個 process 共用一個 coordinator"""
    return BroadcastCoordinator()
