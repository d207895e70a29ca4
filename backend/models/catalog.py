"""
DH CRM - Catalogue: gói dịch vụ, dịch vụ, bảng giá
"""

from typing import Optional
from pydantic import BaseModel, Field, field_validator


class ServicePackageCreate(BaseModel):
    packageName: str = Field(min_length=1)  # ex: Gói cơ bản, Gói cao cấp
    code: Optional[str] = None  # généré PKG-0001 si absent
    description: Optional[str] = None
    active: bool = True

    @field_validator("code")
    @classmethod
    def upper_code(cls, v):
        return v.strip().upper() if v else v


class ServiceCreate(BaseModel):
    serviceName: str = Field(min_length=1)
    serviceGroupName: Optional[str] = None
    code: Optional[str] = None  # généré DV-0001 si absent
    description: Optional[str] = None
    isActive: bool = True

    @field_validator("code")
    @classmethod
    def upper_code(cls, v):
        return v.strip().upper() if v else v


class ServicePricingCreate(BaseModel):
    serviceGroupName: str = Field(min_length=1)
    serviceName: str = Field(min_length=1)
    packageName: str = "Mặc định"
    unitPrice: float = Field(ge=0)
    effectiveFrom: Optional[str] = None
    effectiveTo: Optional[str] = None
    isActive: bool = True
