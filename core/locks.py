"""
並發控制工具

提供 Database-level 的鎖定機制，防止競態條件（Race Condition）

主要使用 PostgreSQL 的 SELECT ... FOR UPDATE 來實現悲觀鎖（Pessimistic Locking）
SQLite 不支援 FOR UPDATE，SQLAlchemy 會直接忽略，此時靠 state_machine 的條件式 UPDATE
與 SQLite 本身的單一寫入者限制保護
"""
from sqlalchemy.orm import Session, Query

from models import DisplayInstance, GameSession


def with_display_lock(display_id: str, db: Session) -> Query:
    """
    鎖定一台 DisplayInstance（行級鎖）

    使用場景：
    - 建立 session 前檢查同一身分有沒有進行中的遊戲
    - 同一台 display 的兩筆提交會排隊，後到的那筆看得到先到那筆已 commit 的 session

    範例：
        with_display_lock(display_id, db).first()
        in_flight = get_in_flight_session(scope, since, db)

    注意：
        - 鎖只持有到 transaction 結束（建立 session 的那一小段）
        - 不同 display 之間互不影響
    """
    return db.query(DisplayInstance).filter(
        DisplayInstance.id == display_id
    ).with_for_update(nowait=False)


def with_session_lock(session_id: str, db: Session) -> Query:
    """
    鎖定一個 GameSession（行級鎖）

    使用場景：
    - 狀態轉換之後讀回 session 並繼續修改（例如發兌換碼）
    - 需要確保 session 在整個 transaction 期間不被其他請求修改

    範例：
        session = with_session_lock(session_id, db).first()
        if not session:
            raise SessionNotFound(session_id)

    注意：
        - populate_existing()：條件式 UPDATE 用 synchronize_session=False，
          identity map 裡的舊物件必須重新載入
        - 必須在 transaction 內使用（確保有 commit 或 rollback）
    """
    return db.query(GameSession).filter(
        GameSession.id == session_id
    ).populate_existing().with_for_update(nowait=False)
