"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  DH CRM - Modèle Customer                                                    ║
║                                                                              ║
║  RÈGLES:                                                                     ║
║  - customerId généré UNE fois à la création (KH-<SHORT>-0001)                ║
║  - jamais régénéré, jamais modifiable par l'API                              ║
║  - suppression = soft delete (isDel), exclu des lectures par défaut          ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from typing import List, Optional
from pydantic import AliasChoices, BaseModel, Field, field_validator


def _strip(v):
    return v.strip() if isinstance(v, str) else v


class CustomerCreate(BaseModel):
    fullName: str
    shortName: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    image: Optional[str] = None
    source: Optional[str] = None
    referrer: Optional[str] = None
    referrerPhone: Optional[str] = None
    serviceGroup: Optional[str] = None
    marketingClassification: Optional[str] = None
    potentialLevel: Optional[str] = None  # nombre d'étoiles, ex "3 sao"
    salesPerson: Optional[str] = None
    needsNote: Optional[str] = None
    isActive: bool = True
    latitude: Optional[float] = Field(default=None, validation_alias=AliasChoices("latitude", "lat"))
    longitude: Optional[float] = Field(default=None, validation_alias=AliasChoices("longitude", "lng"))

    @field_validator("*", mode="before")
    @classmethod
    def strip_strings(cls, v):
        return _strip(v)


class CustomerUpdate(BaseModel):
    fullName: Optional[str] = None
    shortName: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    image: Optional[str] = None
    source: Optional[str] = None
    referrer: Optional[str] = None
    referrerPhone: Optional[str] = None
    serviceGroup: Optional[str] = None
    marketingClassification: Optional[str] = None
    potentialLevel: Optional[str] = None
    salesPerson: Optional[str] = None
    needsNote: Optional[str] = None
    isActive: Optional[bool] = None
    latitude: Optional[float] = Field(default=None, validation_alias=AliasChoices("latitude", "lat"))
    longitude: Optional[float] = Field(default=None, validation_alias=AliasChoices("longitude", "lng"))

    @field_validator("*", mode="before")
    @classmethod
    def strip_strings(cls, v):
        return _strip(v)


class CustomerImportRow(BaseModel):
    """Ligne de fichier déjà parsée; accepte les en-têtes du modèle Excel"""
    fullName: str = Field(default="", validation_alias=AliasChoices("fullName", "Tên đầy đủ"))
    phone: str = Field(default="", validation_alias=AliasChoices("phone", "Điện thoại"))
    email: str = Field(default="", validation_alias=AliasChoices("email", "Email"))
    address: str = Field(default="", validation_alias=AliasChoices("address", "Địa chỉ"))
    shortName: str = Field(default="", validation_alias=AliasChoices("shortName", "Tên viết tắt"))
    source: str = Field(default="", validation_alias=AliasChoices("source", "Nguồn"))
    referrer: str = Field(default="", validation_alias=AliasChoices("referrer", "Người giới thiệu"))
    referrerPhone: str = Field(default="", validation_alias=AliasChoices("referrerPhone", "SĐT người giới thiệu"))
    serviceGroup: str = Field(default="", validation_alias=AliasChoices("serviceGroup", "Nhóm dịch vụ quan tâm"))
    marketingClassification: str = Field(
        default="", validation_alias=AliasChoices("marketingClassification", "Phân loại marketing")
    )
    potentialLevel: str = Field(default="", validation_alias=AliasChoices("potentialLevel", "Mức độ tiềm năng"))
    salesPerson: str = Field(default="", validation_alias=AliasChoices("salesPerson", "Nhân viên phụ trách"))
    needsNote: str = Field(default="", validation_alias=AliasChoices("needsNote", "Ghi chú nhu cầu"))

    @field_validator("*", mode="before")
    @classmethod
    def to_text(cls, v):
        # les cellules numériques (téléphone) arrivent en int/float
        if v is None:
            return ""
        if isinstance(v, float) and v.is_integer():
            v = int(v)
        return str(v).strip()


class CustomerImportRequest(BaseModel):
    rows: List[CustomerImportRow]
    # numéro de la première ligne de données dans le fichier (pour les messages)
    firstRow: int = 4
