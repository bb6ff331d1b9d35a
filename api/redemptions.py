"""
Redemption API Endpoints

職責：
1. 驗證兌換碼（店員輸入玩家的 email / phone / code）
2. 標記已兌換
3. 查詢兌換紀錄與統計
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
import logging

from core.display_manager import DisplayManager
from core.exceptions import DisplayNotFound, RedemptionNotFound
from database import get_db
from models import Redemption
from schemas import (
    RedeemRequest,
    RedemptionResponse,
    RedemptionStatsResponse,
    RedemptionVerify,
    RedemptionVerifyResponse,
)
from services.redemption_service import (
    list_redemptions,
    mark_redeemed,
    redemption_stats,
    verify_redemption,
)

router = APIRouter(prefix="/api", tags=["redemptions"])
logger = logging.getLogger(__name__)


def _to_response(redemption: Redemption, already_redeemed: bool = False) -> RedemptionResponse:
    return RedemptionResponse(
        id=redemption.id,
        session_id=redemption.session_id,
        code=redemption.code,
        outcome_label=redemption.outcome_label,
        email_normalized=redemption.email_normalized,
        phone_normalized=redemption.phone_normalized,
        is_redeemed=redemption.is_redeemed,
        redeemed_at=redemption.redeemed_at,
        redeemed_by=redemption.redeemed_by,
        notes=redemption.notes,
        created_at=redemption.created_at,
        already_redeemed=already_redeemed,
    )


@router.post("/redemptions/verify", response_model=RedemptionVerifyResponse)
def verify(body: RedemptionVerify, db: Session = Depends(get_db)):
    """
    驗證兌換碼

    code、email、phone 三者都要符合；任何不符都只回 valid=False
    """
    try:
        result = verify_redemption(body.email, body.phone, body.code, db)
        return RedemptionVerifyResponse(
            valid=result.valid,
            redeemed=result.redeemed,
            outcome=result.outcome,
        )

    except OperationalError as e:
        logger.error(f"Store unavailable during redemption verification: {e}")
        raise HTTPException(status_code=503, detail="Database connection unavailable")
    except Exception as e:
        logger.error(f"Failed to verify redemption: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/redemptions/{redemption_id}/redeem", response_model=RedemptionResponse)
def redeem(redemption_id: str, body: RedeemRequest, db: Session = Depends(get_db)):
    """
    標記已兌換（單向）

    已經兌換過的不算錯誤，回傳 already_redeemed=True 與原本的兌換資訊
    """
    try:
        redemption, already = mark_redeemed(
            redemption_id, db, redeemed_by=body.redeemed_by, notes=body.notes
        )
        db.commit()
        return _to_response(redemption, already_redeemed=already)

    except RedemptionNotFound:
        db.rollback()
        raise HTTPException(status_code=404, detail="Redemption not found")
    except OperationalError as e:
        db.rollback()
        logger.error(f"Store unavailable while redeeming: {e}")
        raise HTTPException(status_code=503, detail="Database connection unavailable")
    except Exception as e:
        logger.error(f"Failed to mark redemption: {e}", exc_info=True)
        db.rollback()
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/redemptions", response_model=List[RedemptionResponse])
def get_redemptions(
    display_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None, pattern="^(redeemed|pending)$"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db)
):
    try:
        rows = list_redemptions(db, display_id=display_id, status=status, limit=limit, offset=offset)
        return [_to_response(r) for r in rows]

    except OperationalError as e:
        logger.error(f"Store unavailable while listing redemptions: {e}")
        raise HTTPException(status_code=503, detail="Database connection unavailable")
    except Exception as e:
        logger.error(f"Failed to list redemptions: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/displays/{display_id}/redemptions/stats", response_model=RedemptionStatsResponse)
def get_redemption_stats(display_id: str, db: Session = Depends(get_db)):
    try:
        DisplayManager.get_display(db, display_id)
        return RedemptionStatsResponse(**redemption_stats(display_id, db))

    except DisplayNotFound:
        raise HTTPException(status_code=404, detail="Display not found")
    except OperationalError as e:
        logger.error(f"Store unavailable while reading redemption stats: {e}")
        raise HTTPException(status_code=503, detail="Database connection unavailable")
    except Exception as e:
        logger.error(f"Failed to get redemption stats: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
