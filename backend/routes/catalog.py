"""
DH CRM - Routes Catalog
Gói dịch vụ (PKG-0001), dịch vụ (DV-0001), bảng giá dịch vụ.

Les noms de package sont comparés sans casse: "Gói Cơ Bản" == "gói cơ bản".
"""

from fastapi import APIRouter, Depends, Query
import logging
import re
import uuid

from config import db, now_iso
from routes.auth import get_current_user
from models import ServicePackageCreate, ServiceCreate, ServicePricingCreate
from services.errors import ConflictError, NotFoundError
from services.event_logger import log_event
from services.pricing import package_key
from services.sequence import insert_with_generated_code, next_package_code, next_service_code

logger = logging.getLogger("catalog")

router = APIRouter(prefix="/catalog", tags=["Catalog"])


def _same_name(field: str, value: str) -> dict:
    """Filtre d'égalité insensible à la casse"""
    return {field: {"$regex": f"^{re.escape(value.strip())}$", "$options": "i"}}


def _base_doc(data: dict, username: str) -> dict:
    now = now_iso()
    doc = dict(data)
    doc.update({"id": str(uuid.uuid4()), "createdBy": username, "createdAt": now, "updatedAt": now})
    return doc


# ==================== SERVICE PACKAGES ====================

@router.post("/packages")
async def create_package(data: ServicePackageCreate, user: dict = Depends(get_current_user)):
    if await db.service_packages.find_one(_same_name("packageName", data.packageName), {"_id": 1}):
        raise ConflictError(f"Package '{data.packageName}' already exists")

    doc = _base_doc(data.model_dump(), user["username"])
    doc["packageName"] = data.packageName.strip()
    package = await insert_with_generated_code("service_packages", doc, "code", next_package_code)

    logger.info(f"[CATALOG] Package {package['code']} '{package['packageName']}' created")
    return {"success": True, "package": package}


@router.get("/packages/{package_ref}")
async def get_package(package_ref: str, user: dict = Depends(get_current_user)):
    package = await db.service_packages.find_one(
        {"$or": [{"id": package_ref}, {"code": package_ref.upper()}]}, {"_id": 0}
    )
    if not package:
        raise NotFoundError("Package not found")
    return {"package": package}


# ==================== SERVICES ====================

@router.post("/services")
async def create_service(data: ServiceCreate, user: dict = Depends(get_current_user)):
    if await db.services.find_one(_same_name("serviceName", data.serviceName), {"_id": 1}):
        raise ConflictError(f"Service '{data.serviceName}' already exists")

    doc = _base_doc(data.model_dump(), user["username"])
    doc["serviceName"] = data.serviceName.strip()
    service = await insert_with_generated_code("services", doc, "code", next_service_code)

    logger.info(f"[CATALOG] Service {service['code']} '{service['serviceName']}' created")
    return {"success": True, "service": service}


@router.get("/services/{service_ref}")
async def get_service(service_ref: str, user: dict = Depends(get_current_user)):
    service = await db.services.find_one(
        {"$or": [{"id": service_ref}, {"code": service_ref.upper()}]}, {"_id": 0}
    )
    if not service:
        raise NotFoundError("Service not found")
    return {"service": service}


# ==================== SERVICE PRICING ====================

@router.post("/pricing")
async def create_pricing(data: ServicePricingCreate, user: dict = Depends(get_current_user)):
    """
    Nouveau prix unitaire pour (service, package).
    Un seul prix actif par couple: un doublon actif est refusé.
    """
    existing = await db.service_pricing.find_one(
        {
            **_same_name("serviceName", data.serviceName),
            **_same_name("packageName", data.packageName),
            "isActive": True,
        },
        {"_id": 0, "id": 1, "unitPrice": 1, "effectiveFrom": 1},
    )
    if existing:
        raise ConflictError(
            f"An active price already exists for {data.serviceName} / {data.packageName} "
            f"({existing['unitPrice']}, id {existing['id']})"
        )

    doc = _base_doc(data.model_dump(), user["username"])
    doc["serviceName"] = data.serviceName.strip()
    doc["packageName"] = data.packageName.strip()
    doc["effectiveFrom"] = data.effectiveFrom or doc["createdAt"]
    await db.service_pricing.insert_one(doc)
    doc.pop("_id", None)

    await log_event(
        action="pricing_create",
        entity_type="catalog",
        entity_id=doc["id"],
        user=user["username"],
        details={"serviceName": doc["serviceName"], "packageName": doc["packageName"], "unitPrice": doc["unitPrice"]}
    )

    return {"success": True, "pricing": doc}


@router.post("/pricing/{pricing_id}/deactivate")
async def deactivate_pricing(pricing_id: str, user: dict = Depends(get_current_user)):
    result = await db.service_pricing.update_one(
        {"id": pricing_id},
        {"$set": {"isActive": False, "effectiveTo": now_iso(), "updatedAt": now_iso()}}
    )
    if result.matched_count == 0:
        raise NotFoundError("Pricing not found")
    return {"success": True}


@router.get("/pricing/latest")
async def latest_pricing(
    serviceName: str = Query(..., min_length=1),
    user: dict = Depends(get_current_user)
):
    """
    Dernier prix actif par package pour un service (pré-remplissage du devis).
    Retourne {packageName: {unitPrice, ...}}; la première orthographe rencontrée est gardée.
    """
    rows = await db.service_pricing.find(
        {**_same_name("serviceName", serviceName), "isActive": True},
        {"_id": 0}
    ).sort("effectiveFrom", -1).to_list(200)

    latest = {}
    names = {}
    for row in rows:
        key = package_key(row.get("packageName"))
        if key in names:
            continue
        names[key] = row["packageName"]
        latest[row["packageName"]] = {
            "unitPrice": row["unitPrice"],
            "serviceGroupName": row.get("serviceGroupName"),
            "effectiveFrom": row.get("effectiveFrom"),
        }

    return {"serviceName": serviceName, "packages": latest, "count": len(latest)}
