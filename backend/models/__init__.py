"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  DH CRM - Models Package                                                     ║
║                                                                              ║
║  Exporte tous les modèles pour import facile                                 ║
║  from models import CustomerCreate, QuotationCreate, CareStatus, etc.        ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

# Auth
from .auth import (
    VALID_ROLES,
    UserLogin,
    UserCreate,
    UserUpdate
)

# Customer
from .customer import (
    CustomerCreate,
    CustomerUpdate,
    CustomerImportRow,
    CustomerImportRequest
)

# Opportunity
from .opportunity import (
    OpportunityStatus,
    OpportunityCreate,
    OpportunityUpdate
)

# Customer care
from .care import (
    CareStatus,
    CareType,
    CareMethod,
    CareFile,
    CareCreate,
    CareUpdate,
    CareStatusChange
)

# Survey
from .survey import (
    SurveyStatus,
    TERMINAL_SURVEY_STATUSES,
    SurveyUnit,
    SurveyItem,
    SurveyCreate,
    SurveyUpdate,
    SurveyStatusChange
)

# Quotation
from .quotation import (
    QuotationStatus,
    PackagePrice,
    QuotationLine,
    QuotationCreate,
    QuotationUpdate,
    LineEdit,
    SurveyLink,
    QuotationStatusChange
)

# Catalog
from .catalog import (
    ServicePackageCreate,
    ServiceCreate,
    ServicePricingCreate
)

__all__ = [
    # Auth
    "VALID_ROLES",
    "UserLogin",
    "UserCreate",
    "UserUpdate",
    # Customer
    "CustomerCreate",
    "CustomerUpdate",
    "CustomerImportRow",
    "CustomerImportRequest",
    # Opportunity
    "OpportunityStatus",
    "OpportunityCreate",
    "OpportunityUpdate",
    # Customer care
    "CareStatus",
    "CareType",
    "CareMethod",
    "CareFile",
    "CareCreate",
    "CareUpdate",
    "CareStatusChange",
    # Survey
    "SurveyStatus",
    "TERMINAL_SURVEY_STATUSES",
    "SurveyUnit",
    "SurveyItem",
    "SurveyCreate",
    "SurveyUpdate",
    "SurveyStatusChange",
    # Quotation
    "QuotationStatus",
    "PackagePrice",
    "QuotationLine",
    "QuotationCreate",
    "QuotationUpdate",
    "LineEdit",
    "SurveyLink",
    "QuotationStatusChange",
    # Catalog
    "ServicePackageCreate",
    "ServiceCreate",
    "ServicePricingCreate",
]
