"""
DH CRM - Modèle ProjectSurvey (Khảo sát dự án)

area / volume des lignes ne sont pas des champs d'entrée:
ils sont recalculés à chaque sauvegarde (services/pricing.survey_item_metrics).
"""

from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field


class SurveyStatus(str, Enum):
    DRAFT = "draft"
    SURVEYED = "surveyed"
    QUOTED = "quoted"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_SURVEY_STATUSES = {SurveyStatus.COMPLETED.value, SurveyStatus.CANCELLED.value}


class SurveyUnit(str, Enum):
    M2 = "m2"
    M3 = "m3"


class SurveyItem(BaseModel):
    name: str = Field(min_length=1)  # nhóm - hạng mục
    unit: SurveyUnit
    length: float = Field(ge=0)
    width: float = Field(ge=0)
    coefficient: float = Field(default=1, ge=0)
    note: Optional[str] = None


class SurveyCreate(BaseModel):
    surveyNo: Optional[str] = None
    surveys: List[SurveyItem]
    surveyDate: str
    surveyAddress: Optional[str] = None
    surveyNotes: Optional[str] = None
    customerRef: Optional[str] = None
    careRef: Optional[str] = None


class SurveyUpdate(BaseModel):
    surveys: Optional[List[SurveyItem]] = None
    surveyDate: Optional[str] = None
    surveyAddress: Optional[str] = None
    surveyNotes: Optional[str] = None


class SurveyStatusChange(BaseModel):
    status: SurveyStatus
