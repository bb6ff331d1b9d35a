"""
Display API Endpoints（管理端）

職責：
1. Display instance 的新增、查詢、更新、刪除
2. Validation policy 設定
3. 獎項管理
"""
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
import logging

from core.display_manager import DisplayManager
from core.exceptions import (
    DisplayAlreadyExists,
    DisplayNotFound,
    InvalidConfiguration,
    OutcomeNotFound,
)
from core.session_manager import outcome_payload
from database import get_db
from models import DisplayInstance, Outcome, ValidationPolicy
from schemas import (
    DisplayConfigResponse,
    DisplayCreate,
    DisplayResponse,
    DisplayStatsResponse,
    DisplayUpdate,
    OutcomeCreate,
    OutcomeInfo,
    OutcomeResponse,
    OutcomeUpdate,
    StatusResponse,
    ValidationPolicyBody,
    ValidationPolicyResponse,
)

router = APIRouter(prefix="/api", tags=["displays"])
logger = logging.getLogger(__name__)

STORE_UNAVAILABLE = "Database connection unavailable"


def _display_response(display: DisplayInstance) -> DisplayResponse:
    return DisplayResponse(
        id=display.id,
        location_name=display.location_name,
        is_active=display.is_active,
        created_at=display.created_at,
    )


def _outcome_response(outcome: Outcome) -> OutcomeResponse:
    return OutcomeResponse(
        id=outcome.id,
        display_id=outcome.display_id,
        label=outcome.label,
        probability_weight=outcome.probability_weight,
        is_negative=outcome.is_negative,
        is_active=outcome.is_active,
        style=outcome.style,
    )


def _policy_response(policy: ValidationPolicy) -> ValidationPolicyResponse:
    return ValidationPolicyResponse(
        display_id=policy.display_id,
        allow_multiple_plays=policy.allow_multiple_plays,
        max_plays_per_email=policy.max_plays_per_email,
        max_plays_per_phone=policy.max_plays_per_phone,
        time_window_hours=policy.time_window_hours,
        allow_retry_on_negative=policy.allow_retry_on_negative,
        check_display_ids=policy.check_display_ids,
    )


# ============ Displays ============

@router.get("/displays", response_model=List[DisplayResponse])
def list_displays(db: Session = Depends(get_db)):
    try:
        return [_display_response(d) for d in DisplayManager.list_displays(db)]
    except OperationalError as e:
        logger.error(f"Store unavailable while listing displays: {e}")
        raise HTTPException(status_code=503, detail=STORE_UNAVAILABLE)


@router.post("/displays", response_model=DisplayResponse, status_code=201)
def create_display(body: DisplayCreate, db: Session = Depends(get_db)):
    """
    建立 display（含預設獎項與預設 policy）
    """
    try:
        display = DisplayManager.create_display(
            db, body.id, location_name=body.location_name, is_active=body.is_active
        )
        return _display_response(display)

    except InvalidConfiguration as e:
        raise HTTPException(status_code=400, detail=str(e))
    except DisplayAlreadyExists:
        raise HTTPException(status_code=409, detail="Display with this id already exists")
    except OperationalError as e:
        logger.error(f"Store unavailable while creating display: {e}")
        raise HTTPException(status_code=503, detail=STORE_UNAVAILABLE)
    except Exception as e:
        logger.error(f"Failed to create display: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/displays/{display_id}", response_model=DisplayConfigResponse)
def get_display(display_id: str, db: Session = Depends(get_db)):
    """display 啟動時讀取設定與啟用中的獎項（畫轉盤用）"""
    try:
        display = DisplayManager.get_display(db, display_id)
        outcomes = DisplayManager.list_outcomes(db, display_id)
        return DisplayConfigResponse(
            **_display_response(display).model_dump(),
            outcomes=[OutcomeInfo(**outcome_payload(o)) for o in outcomes],
        )

    except DisplayNotFound:
        raise HTTPException(status_code=404, detail="Display not found")
    except OperationalError as e:
        logger.error(f"Store unavailable while reading display: {e}")
        raise HTTPException(status_code=503, detail=STORE_UNAVAILABLE)
    except Exception as e:
        logger.error(f"Failed to get display: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.patch("/displays/{display_id}", response_model=DisplayResponse)
def update_display(display_id: str, body: DisplayUpdate, db: Session = Depends(get_db)):
    try:
        display = DisplayManager.update_display(
            db, display_id, location_name=body.location_name, is_active=body.is_active
        )
        return _display_response(display)

    except DisplayNotFound:
        raise HTTPException(status_code=404, detail="Display not found")
    except InvalidConfiguration as e:
        raise HTTPException(status_code=400, detail=str(e))
    except OperationalError as e:
        logger.error(f"Store unavailable while updating display: {e}")
        raise HTTPException(status_code=503, detail=STORE_UNAVAILABLE)
    except Exception as e:
        logger.error(f"Failed to update display: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.delete("/displays/{display_id}", response_model=StatusResponse)
def delete_display(display_id: str, db: Session = Depends(get_db)):
    try:
        DisplayManager.delete_display(db, display_id)
        return StatusResponse(message="Display deleted successfully")

    except DisplayNotFound:
        raise HTTPException(status_code=404, detail="Display not found")
    except OperationalError as e:
        logger.error(f"Store unavailable while deleting display: {e}")
        raise HTTPException(status_code=503, detail=STORE_UNAVAILABLE)
    except Exception as e:
        logger.error(f"Failed to delete display: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/displays/{display_id}/stats", response_model=DisplayStatsResponse)
def get_display_stats(display_id: str, db: Session = Depends(get_db)):
    try:
        return DisplayStatsResponse(**DisplayManager.get_stats(db, display_id))

    except DisplayNotFound:
        raise HTTPException(status_code=404, detail="Display not found")
    except OperationalError as e:
        logger.error(f"Store unavailable while reading display stats: {e}")
        raise HTTPException(status_code=503, detail=STORE_UNAVAILABLE)


# ============ Validation policy ============

@router.get("/displays/{display_id}/validation", response_model=ValidationPolicyResponse)
def get_validation_policy(display_id: str, db: Session = Depends(get_db)):
    """沒有設定過時回傳預設 policy（一生只能玩一次）"""
    try:
        return _policy_response(DisplayManager.get_policy(db, display_id))

    except DisplayNotFound:
        raise HTTPException(status_code=404, detail="Display not found")
    except OperationalError as e:
        logger.error(f"Store unavailable while reading policy: {e}")
        raise HTTPException(status_code=503, detail=STORE_UNAVAILABLE)


@router.put("/displays/{display_id}/validation", response_model=ValidationPolicyResponse)
def update_validation_policy(display_id: str, body: ValidationPolicyBody, db: Session = Depends(get_db)):
    try:
        policy = DisplayManager.upsert_policy(db, display_id, **body.model_dump())
        return _policy_response(policy)

    except DisplayNotFound:
        raise HTTPException(status_code=404, detail="Display not found")
    except InvalidConfiguration as e:
        raise HTTPException(status_code=400, detail=str(e))
    except OperationalError as e:
        logger.error(f"Store unavailable while updating policy: {e}")
        raise HTTPException(status_code=503, detail=STORE_UNAVAILABLE)
    except Exception as e:
        logger.error(f"Failed to update validation policy: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


# ============ Outcomes ============

@router.get("/displays/{display_id}/outcomes", response_model=List[OutcomeResponse])
def list_outcomes(display_id: str, include_inactive: bool = Query(False), db: Session = Depends(get_db)):
    try:
        outcomes = DisplayManager.list_outcomes(db, display_id, include_inactive=include_inactive)
        return [_outcome_response(o) for o in outcomes]

    except DisplayNotFound:
        raise HTTPException(status_code=404, detail="Display not found")
    except OperationalError as e:
        logger.error(f"Store unavailable while listing outcomes: {e}")
        raise HTTPException(status_code=503, detail=STORE_UNAVAILABLE)


@router.post("/displays/{display_id}/outcomes", response_model=OutcomeResponse, status_code=201)
def create_outcome(display_id: str, body: OutcomeCreate, db: Session = Depends(get_db)):
    try:
        outcome = DisplayManager.create_outcome(db, display_id, **body.model_dump())
        return _outcome_response(outcome)

    except DisplayNotFound:
        raise HTTPException(status_code=404, detail="Display not found")
    except InvalidConfiguration as e:
        raise HTTPException(status_code=400, detail=str(e))
    except OperationalError as e:
        logger.error(f"Store unavailable while creating outcome: {e}")
        raise HTTPException(status_code=503, detail=STORE_UNAVAILABLE)
    except Exception as e:
        logger.error(f"Failed to create outcome: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.put("/outcomes/{outcome_id}", response_model=OutcomeResponse)
def update_outcome(outcome_id: str, body: OutcomeUpdate, db: Session = Depends(get_db)):
    try:
        outcome = DisplayManager.update_outcome(db, outcome_id, **body.model_dump())
        return _outcome_response(outcome)

    except OutcomeNotFound:
        raise HTTPException(status_code=404, detail="Outcome not found")
    except InvalidConfiguration as e:
        raise HTTPException(status_code=400, detail=str(e))
    except OperationalError as e:
        logger.error(f"Store unavailable while updating outcome: {e}")
        raise HTTPException(status_code=503, detail=STORE_UNAVAILABLE)
    except Exception as e:
        logger.error(f"Failed to update outcome: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.delete("/outcomes/{outcome_id}", response_model=StatusResponse)
def delete_outcome(outcome_id: str, db: Session = Depends(get_db)):
    try:
        DisplayManager.delete_outcome(db, outcome_id)
        return StatusResponse(message="Outcome deleted successfully")

    except OutcomeNotFound:
        raise HTTPException(status_code=404, detail="Outcome not found")
    except OperationalError as e:
        logger.error(f"Store unavailable while deleting outcome: {e}")
        raise HTTPException(status_code=503, detail=STORE_UNAVAILABLE)
    except Exception as e:
        logger.error(f"Failed to delete outcome: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
