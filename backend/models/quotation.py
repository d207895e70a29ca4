"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  DH CRM - Modèle Quotation (Báo giá)                                         ║
║                                                                              ║
║  packages = lignes {serviceGroup, service, volume, packages[]}               ║
║  Les totaux envoyés par le client sont ignorés: recalcul serveur.            ║
║                                                                              ║
║  Statuts: draft -> sent -> approved|rejected ; approved -> completed         ║
║  approved / completed = VERROUILLÉ (aucune modification)                     ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from enum import Enum
from typing import List, Optional
from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class QuotationStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"


class PackagePrice(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = Field(default=None, alias="_id")
    packageName: str
    unitPrice: float = Field(default=0, ge=0, validation_alias=AliasChoices("unitPrice", "servicePricing"))
    isSelected: Optional[bool] = None


class QuotationLine(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = Field(default=None, alias="_id")
    serviceGroup: str = ""
    service: str
    volume: Optional[float] = Field(default=None, ge=0)
    volumePinned: bool = False
    packages: List[PackagePrice] = []


class QuotationCreate(BaseModel):
    quotationNo: Optional[str] = None
    customer: Optional[str] = None  # nom affiché
    customerRef: Optional[str] = None
    surveyRef: Optional[str] = None
    careRef: Optional[str] = None
    opportunityRef: Optional[str] = None
    date: Optional[str] = None
    validTo: Optional[str] = None
    packages: List[QuotationLine] = []
    taxAmount: float = Field(default=0, ge=0)
    notes: Optional[str] = None


class QuotationUpdate(BaseModel):
    customer: Optional[str] = None
    customerRef: Optional[str] = None
    surveyRef: Optional[str] = None
    date: Optional[str] = None
    validTo: Optional[str] = None
    packages: Optional[List[QuotationLine]] = None
    taxAmount: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = None
    status: Optional[QuotationStatus] = None
    # contrôle optimiste: si fourni, doit égaler la révision stockée
    revision: Optional[int] = None


class LineEdit(BaseModel):
    packageName: Optional[str] = None
    unitPrice: Optional[float] = Field(default=None, ge=0)
    volume: Optional[float] = Field(default=None, ge=0)
    revision: Optional[int] = None


class SurveyLink(BaseModel):
    surveyRef: Optional[str] = None
    revision: Optional[int] = None


class QuotationStatusChange(BaseModel):
    status: QuotationStatus
