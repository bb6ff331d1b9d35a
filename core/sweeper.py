"""
背景清理工作

- stuck session：PLAYING 超過時限的 session 強制完成
- token：移除過期的 access token

兩者互不共享狀態，各自一個 asyncio task，在 FastAPI lifespan 中啟動與停止
資料庫操作是同步的，丟到 threadpool 執行，不阻塞 event loop
"""
from typing import Awaitable, Callable
import asyncio
import logging

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.exc import OperationalError

from core.session_manager import SessionManager
from core.token_service import TokenService
from database import SessionLocal

logger = logging.getLogger(__name__)


def sweep_stuck_sessions(timeout_seconds: int) -> int:
    db = SessionLocal()
    try:
        return len(SessionManager.complete_stuck_sessions(db, timeout_seconds))
    finally:
        db.close()


async def run_periodically(name: str, interval_seconds: float, job: Callable[[], Awaitable]) -> None:
    """
    每 interval_seconds 執行一次 job，直到被 cancel

    資料庫暫時連不上只記 warning，下一輪再試；其他錯誤記 error 但不讓迴圈結束
    """
    logger.info(f"Background job {name} started (every {interval_seconds}s)")
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await job()
        except asyncio.CancelledError:
            raise
        except OperationalError as e:
            logger.warning(f"Background job {name} skipped, store unavailable: {e}")
        except Exception as e:
            logger.error(f"Background job {name} failed: {e}", exc_info=True)


def start_sweepers(settings, tokens: TokenService) -> list:
    """建立背景 task，回傳 task 清單供 shutdown 時 cancel"""

    async def stuck_job():
        await run_in_threadpool(sweep_stuck_sessions, settings.stuck_session_timeout_seconds)

    async def token_job():
        tokens.sweep()

    return [
        asyncio.create_task(run_periodically(
            "stuck-session-sweep", settings.stuck_sweep_interval_seconds, stuck_job
        )),
        asyncio.create_task(run_periodically(
            "token-sweep", settings.token_sweep_interval_seconds, token_job
        )),
    ]


async def stop_sweepers(tasks: list) -> None:
    for task in tasks:
        task.cancel()
    for task in tasks:
        try:
            await task
        except asyncio.CancelledError:
            pass
