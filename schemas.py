"""
API request / response schemas
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from models import SessionStatus


# ============ Form / Session ============

class FormSubmit(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: str
    phone: str
    display_id: str = Field(..., min_length=1, max_length=50)
    token: str = Field(..., min_length=1)


class SubmitResponse(BaseModel):
    success: bool = True
    session_id: str
    message: str = "Details submitted! Click the buzzer to start the game!"


class OutcomeInfo(BaseModel):
    id: str
    label: str
    is_negative: bool
    style: Optional[Dict[str, Any]] = None


class SessionResponse(BaseModel):
    id: str
    status: SessionStatus
    created_at: datetime
    user_name: Optional[str] = None
    outcome: Optional[OutcomeInfo] = None
    redemption_code: Optional[str] = None


class SessionActionResponse(BaseModel):
    ok: bool = True
    session_id: str
    status: SessionStatus
    message: Optional[str] = None


class EligibilityResponse(BaseModel):
    eligible: bool
    reason: Optional[str] = None
    code: Optional[str] = None


# ============ Tokens ============

class TokenResponse(BaseModel):
    token: str
    expires_in: int


class TokenValidationResponse(BaseModel):
    valid: bool
    display_id: Optional[str] = None


# ============ Redemptions ============

class RedemptionVerify(BaseModel):
    email: str
    phone: str
    code: str


class RedemptionVerifyResponse(BaseModel):
    valid: bool
    redeemed: bool = False
    outcome: Optional[str] = None


class RedeemRequest(BaseModel):
    redeemed_by: Optional[str] = None
    notes: Optional[str] = None


class RedemptionResponse(BaseModel):
    id: str
    session_id: str
    code: str
    outcome_label: Optional[str] = None
    email_normalized: str
    phone_normalized: str
    is_redeemed: bool
    redeemed_at: Optional[datetime] = None
    redeemed_by: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    already_redeemed: bool = False


class RedemptionStatsResponse(BaseModel):
    total_redemptions: int
    redeemed_count: int
    pending_count: int


# ============ Displays ============

class DisplayCreate(BaseModel):
    id: str
    location_name: Optional[str] = None
    is_active: bool = True


class DisplayUpdate(BaseModel):
    location_name: Optional[str] = None
    is_active: Optional[bool] = None


class DisplayResponse(BaseModel):
    id: str
    location_name: str
    is_active: bool
    created_at: datetime


class DisplayConfigResponse(DisplayResponse):
    outcomes: List[OutcomeInfo] = []


class DisplayStatsResponse(BaseModel):
    total_users: int
    total_sessions: int
    pending_sessions: int
    playing_sessions: int
    completed_sessions: int


class ValidationPolicyBody(BaseModel):
    allow_multiple_plays: bool = False
    max_plays_per_email: Optional[int] = 1
    max_plays_per_phone: Optional[int] = 1
    time_window_hours: Optional[int] = None
    allow_retry_on_negative: bool = False
    check_display_ids: Optional[str] = None


class ValidationPolicyResponse(ValidationPolicyBody):
    display_id: str


# ============ Outcomes ============

class OutcomeCreate(BaseModel):
    label: str
    probability_weight: int
    is_negative: bool = False
    is_active: bool = True
    style: Optional[Dict[str, Any]] = None


class OutcomeUpdate(BaseModel):
    label: Optional[str] = None
    probability_weight: Optional[int] = None
    is_negative: Optional[bool] = None
    is_active: Optional[bool] = None
    style: Optional[Dict[str, Any]] = None


class OutcomeResponse(OutcomeInfo):
    display_id: str
    probability_weight: int
    is_active: bool


class StatusResponse(BaseModel):
    status: str = "ok"
    message: Optional[str] = None
