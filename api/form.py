"""
Form / Session API Endpoints

職責：
1. 玩家提交表單（建立 session）
2. 玩家按下 buzzer（開始遊戲）
3. 手機端輪詢 session 狀態
4. display 回報動畫結束（HTTP fallback，即時通道見 api/websocket.py）
5. 提交前的資格預檢
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
import logging

from core.broadcast import BroadcastCoordinator, get_broadcaster
from core.exceptions import (
    DisplayInactive,
    DisplayNotFound,
    InvalidIdentity,
    InvalidState,
    InvalidToken,
    OutcomeSelectionError,
    PlayerNotEligible,
    SessionNotFound,
)
from core.session_manager import SessionManager, outcome_payload, require_active_display
from core.token_service import TokenService, get_token_service
from database import get_db
from models import SessionStatus
from schemas import (
    EligibilityResponse,
    FormSubmit,
    OutcomeInfo,
    SessionActionResponse,
    SessionResponse,
    SubmitResponse,
)
from services.identity_service import normalize_identity
from services.validation_service import evaluate_eligibility

router = APIRouter(prefix="/api", tags=["form"])
logger = logging.getLogger(__name__)

STORE_UNAVAILABLE = "Database connection unavailable. Please try again shortly."


@router.post("/submit", response_model=SubmitResponse)
def submit_form(form: FormSubmit, db: Session = Depends(get_db),
                tokens: TokenService = Depends(get_token_service),
                broadcaster: BroadcastCoordinator = Depends(get_broadcaster)):
    """
    提交表單

    流程：
    1. 正規化 email / phone
    2. 檢查 display 與 token
    3. 執行 validation policy
    4. 抽出獎項並建立 session（PENDING）
    5. 通知 display 預先準備

    返回：
        - session_id: 之後按 buzzer / 輪詢用
    """
    try:
        session = SessionManager.create_session(
            db,
            name=form.name,
            email=form.email,
            phone=form.phone,
            display_id=form.display_id,
            token=form.token,
            tokens=tokens,
            broadcaster=broadcaster,
        )
        return SubmitResponse(session_id=session.id)

    except InvalidIdentity as e:
        raise HTTPException(status_code=400, detail=str(e))
    except InvalidToken as e:
        logger.warning(f"Rejected submission for display {form.display_id}: {e.detail}")
        raise HTTPException(status_code=401, detail=InvalidToken.PUBLIC_MESSAGE)
    except DisplayNotFound:
        raise HTTPException(status_code=404, detail="Display not found")
    except DisplayInactive:
        raise HTTPException(status_code=400, detail="Display is not active")
    except PlayerNotEligible as e:
        logger.info(f"Submission rejected by policy on display {form.display_id}: {e.code}")
        raise HTTPException(status_code=403, detail=e.reason)
    except OutcomeSelectionError as e:
        logger.warning(f"Outcome selection failed for display {form.display_id}: {e}")
        raise HTTPException(status_code=409, detail="No prizes are available right now")
    except OperationalError as e:
        logger.error(f"Store unavailable during submission: {e}")
        raise HTTPException(status_code=503, detail=STORE_UNAVAILABLE)
    except Exception as e:
        logger.error(f"Failed to submit form: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/session/{session_id}", response_model=SessionResponse)
def get_session(session_id: str, db: Session = Depends(get_db)):
    """
    取得 session 狀態（手機端輪詢、display 重新連線時補狀態）

    返回：
        - status: pending / playing / completed
        - outcome: 抽出的獎項
        - redemption_code: 完成且有兌換碼時才會出現
    """
    try:
        session = SessionManager.get_session(db, session_id)

        outcome = outcome_payload(session.outcome)
        redemption_code = None
        if session.status == SessionStatus.COMPLETED and session.redemption:
            redemption_code = session.redemption.code

        return SessionResponse(
            id=session.id,
            status=session.status,
            created_at=session.created_at,
            user_name=session.player.name if session.player else None,
            outcome=OutcomeInfo(**outcome) if outcome else None,
            redemption_code=redemption_code,
        )

    except SessionNotFound:
        raise HTTPException(status_code=404, detail="Session not found")
    except OperationalError as e:
        logger.error(f"Store unavailable while reading session: {e}")
        raise HTTPException(status_code=503, detail=STORE_UNAVAILABLE)
    except Exception as e:
        logger.error(f"Failed to get session: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/session/{session_id}/start", response_model=SessionActionResponse)
def start_game(session_id: str, db: Session = Depends(get_db),
               broadcaster: BroadcastCoordinator = Depends(get_broadcaster)):
    """
    按下 buzzer（PENDING -> PLAYING）

    前置條件：
    - session 必須是 PENDING

    效果：
    - 通知 display 開始轉盤（只有第一次成功時）
    """
    logger.info(f"Buzzer pressed for session {session_id}")
    try:
        session = SessionManager.start_session(db, session_id, broadcaster)
        return SessionActionResponse(
            session_id=session.id,
            status=session.status,
            message="Game started! Watch the screen!",
        )

    except SessionNotFound:
        logger.warning(f"Start requested for unknown session {session_id}")
        raise HTTPException(status_code=404, detail="Session not found")
    except InvalidState as e:
        logger.warning(f"Cannot start session {session_id}: status is {e.status}")
        raise HTTPException(status_code=409, detail=str(e))
    except OperationalError as e:
        logger.error(f"Store unavailable while starting session: {e}")
        raise HTTPException(status_code=503, detail=STORE_UNAVAILABLE)
    except Exception as e:
        logger.error(f"Failed to start game: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/session/{session_id}/complete", response_model=SessionActionResponse)
def complete_game(session_id: str, db: Session = Depends(get_db)):
    """
    display 回報動畫結束（HTTP fallback）

    冪等：重複呼叫回傳成功，不會產生第二筆兌換碼
    """
    try:
        result = SessionManager.report_completion(db, session_id)
        return SessionActionResponse(session_id=session_id, status=result.session.status)

    except SessionNotFound:
        logger.warning(f"Completion reported for unknown session {session_id}")
        raise HTTPException(status_code=404, detail="Session not found")
    except OperationalError as e:
        logger.error(f"Store unavailable while completing session: {e}")
        raise HTTPException(status_code=503, detail=STORE_UNAVAILABLE)
    except Exception as e:
        logger.error(f"Failed to complete game: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/eligibility", response_model=EligibilityResponse)
def check_eligibility(
    email: str = Query(...),
    phone: str = Query(...),
    display_id: str = Query(...),
    db: Session = Depends(get_db)
):
    """
    提交前的資格預檢（和提交時同一套規則，但不寫入任何資料）
    """
    try:
        identity = normalize_identity(email, phone)
        require_active_display(db, display_id)
        result = evaluate_eligibility(identity, display_id, db)
        return EligibilityResponse(eligible=result.eligible, reason=result.reason, code=result.code)

    except InvalidIdentity as e:
        raise HTTPException(status_code=400, detail=str(e))
    except DisplayNotFound:
        raise HTTPException(status_code=404, detail="Display not found")
    except DisplayInactive:
        raise HTTPException(status_code=400, detail="Display is not active")
    except OperationalError as e:
        logger.error(f"Store unavailable during eligibility check: {e}")
        raise HTTPException(status_code=503, detail=STORE_UNAVAILABLE)
    except Exception as e:
        logger.error(f"Failed to check eligibility: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
