from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel


class AnalysisCreate(BaseModel):
    property_address: Optional[str] = None
    inputs: Dict[str, Any] = {}


class AnalysisResponse(BaseModel):
    id: int
    property_address: Optional[str] = None
    plan_at_time: str
    usage_count: Optional[int] = None
    usage_limit: Optional[int] = None
    created_at: Optional[datetime] = None


class UsageResponse(BaseModel):
    plan: str
    status: str
    period_start: datetime
    period_end: datetime
    count: int
    limit: Optional[int] = None
    unlimited: bool
    remaining: Optional[int] = None
    percentage_used: int
    message: str


class QuotaRejection(BaseModel):
    code: str
    message: str
    hint: Optional[str] = None
    limit: Optional[int] = None
