"""
Access Token API Endpoints

display 顯示的 QR code 帶著 token，手機端用它提交表單
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
import logging

from core.exceptions import DisplayInactive, DisplayNotFound, InvalidToken
from core.token_service import TokenService, get_token_service
from database import get_db
from schemas import TokenResponse, TokenValidationResponse

router = APIRouter(prefix="/api/token", tags=["tokens"])
logger = logging.getLogger(__name__)


@router.get("/generate", response_model=TokenResponse)
def generate_token(
    display_id: str = Query(...),
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service)
):
    try:
        issued = tokens.issue(db, display_id)
        return TokenResponse(token=issued.token, expires_in=issued.ttl_seconds)

    except DisplayNotFound:
        raise HTTPException(status_code=404, detail="Display not found")
    except DisplayInactive:
        raise HTTPException(status_code=400, detail="Display is not active")
    except OperationalError as e:
        logger.error(f"Store unavailable while issuing token: {e}")
        raise HTTPException(status_code=503, detail="Database connection unavailable")
    except Exception as e:
        logger.error(f"Failed to generate token: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/validate", response_model=TokenValidationResponse)
def validate_token(token: str = Query(...), tokens: TokenService = Depends(get_token_service)):
    """
    檢查 token 是否有效（不會消耗 token）

    不存在 / 過期都回同一個訊息，避免透露是哪一種情況
    """
    try:
        display_id = tokens.validate(token)
        return TokenValidationResponse(valid=True, display_id=display_id)

    except InvalidToken as e:
        logger.info(f"Token validation failed: {e.detail}")
        raise HTTPException(status_code=401, detail=InvalidToken.PUBLIC_MESSAGE)
    except Exception as e:
        logger.error(f"Failed to validate token: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
