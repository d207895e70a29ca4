"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  DH CRM - Modèle CustomerCare (Kế hoạch CSKH)                                ║
║                                                                              ║
║  RÈGLES:                                                                     ║
║  - careId généré par séquence: CSKH<MM><YY><NNN>                             ║
║  - statut initial TOUJOURS "Chờ báo cáo"                                     ║
║  - "Hoàn thành" exige careResult                                             ║
║  - "Hủy" exige rejectGroup ET rejectReason                                   ║
║  - les deux sont terminaux                                                   ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field


class CareStatus(str, Enum):
    PENDING = "Chờ báo cáo"
    DONE = "Hoàn thành"
    CANCELLED = "Hủy"


class CareType(str, Enum):
    CONSULTING_SURVEY = "Tư vấn – Khảo sát"
    QUOTE_CLARIFICATION = "Làm rõ báo giá / hợp đồng"
    DEPLOYMENT = "Triển khai – Theo dõi"
    DEBT_COLLECTION = "Xử lý công nợ"
    AFTER_SALES = "Hậu mãi – Chăm sóc định kỳ"


class CareMethod(str, Enum):
    ONLINE = "Online"
    IN_PERSON = "Trực tiếp"


class CareFile(BaseModel):
    url: str
    name: str = ""
    format: Optional[str] = None


class CareCreate(BaseModel):
    customerRef: str
    opportunityRef: Optional[str] = None
    careType: CareType = CareType.CONSULTING_SURVEY
    timeFrom: Optional[str] = None
    timeTo: Optional[str] = None
    method: CareMethod = CareMethod.ONLINE
    location: Optional[str] = None
    carePerson: str = Field(min_length=1)
    actualCareDate: Optional[str] = None
    images: List[str] = []
    files: List[CareFile] = []
    interestedServices: List[str] = []
    discussionContent: Optional[str] = None
    needsNote: Optional[str] = None
    surveyRef: Optional[str] = None
    quotationRef: Optional[str] = None


class CareUpdate(BaseModel):
    """Champs éditables tant que le plan est "Chờ báo cáo" (statut: voir CareStatusChange)"""
    opportunityRef: Optional[str] = None
    careType: Optional[CareType] = None
    timeFrom: Optional[str] = None
    timeTo: Optional[str] = None
    method: Optional[CareMethod] = None
    location: Optional[str] = None
    carePerson: Optional[str] = None
    actualCareDate: Optional[str] = None
    images: Optional[List[str]] = None
    files: Optional[List[CareFile]] = None
    interestedServices: Optional[List[str]] = None
    discussionContent: Optional[str] = None
    needsNote: Optional[str] = None
    surveyRef: Optional[str] = None
    quotationRef: Optional[str] = None


class CareStatusChange(BaseModel):
    status: CareStatus
    careResult: Optional[str] = None
    careClassification: Optional[str] = None
    rejectGroup: Optional[str] = None
    rejectReason: Optional[str] = None
    actualCareDate: Optional[str] = None
