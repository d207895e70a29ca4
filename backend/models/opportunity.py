"""
DH CRM - Modèle Opportunity (Cơ hội)

opportunityValue n'est jamais lu depuis le client:
le serveur le recalcule = unitPrice × probability / 100.
"""

from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field


class OpportunityStatus(str, Enum):
    NEW = "Mới ghi nhận"
    CONSULTING = "Đang tư vấn"
    PROPOSAL_SENT = "Đã gửi đề xuất"
    PENDING_DECISION = "Chờ quyết định"
    WON = "Thành công"
    LOST = "Không thành công"


class OpportunityCreate(BaseModel):
    customerRef: str
    demands: List[str] = []
    unitPrice: float = Field(default=0, ge=0)
    probability: float = Field(default=0, ge=0, le=100)
    closingDate: Optional[str] = None
    actualRevenue: float = Field(default=0, ge=0)
    status: OpportunityStatus = OpportunityStatus.NEW


class OpportunityUpdate(BaseModel):
    demands: Optional[List[str]] = None
    unitPrice: Optional[float] = Field(default=None, ge=0)
    probability: Optional[float] = Field(default=None, ge=0, le=100)
    closingDate: Optional[str] = None
    actualRevenue: Optional[float] = Field(default=None, ge=0)
    status: Optional[OpportunityStatus] = None
