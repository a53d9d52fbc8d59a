"""
License and compliance declarations for developer games, and their admin review.
"""

import logging
from typing import Optional, List, Dict, Any

from bson import ObjectId
from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from pydantic import BaseModel, ValidationError
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

import compliance
from database import db, create_document, serialize, to_object_id, utcnow
from routes_games import own_game
from schemas import License, Engine, Asset, IntellectualProperty, Declarations, ComplianceChecks
from security import Principal, require_roles, ROLE_ADMIN, ROLE_DEVELOPER
from storage import save_upload, remove_upload
from validation import sanitize_input
from workflow import (
    LICENSE_IN_REVIEW, LICENSE_REJECTED, LICENSE_DECISIONS, LICENSE_EDITABLE, LICENSE_TRANSITIONS,
    ensure_transition,
)

logger = logging.getLogger(__name__)

dev_router = APIRouter(prefix="/api/dev", tags=["licenses"])
admin_router = APIRouter(prefix="/api/admin/licenses", tags=["licenses"])

developer_only = require_roles(ROLE_DEVELOPER)
admin_only = require_roles(ROLE_ADMIN)

LICENSE_FILE_TYPES = (
    "application/pdf", "image/jpeg", "image/png", "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document", "text/plain",
)
MAX_LICENSE_FILE_BYTES = 10 * 1024 * 1024
FILE_KINDS = (
    "Engine License", "Asset License", "IP Documentation", "Copyright Certificate", "Permission Letter",
    "Trademark Certificate", "Patent Document", "Contract/Agreement", "Other",
)

REQUIREMENTS = {
    "engineInformation": {
        "required": True,
        "fields": [
            {"name": "engine.name", "type": "enum", "required": True,
             "options": ["Unity", "Unreal Engine", "Godot", "Phaser", "PixiJS", "Three.js", "Babylon.js",
                         "Custom/Vanilla JS", "HTML5 Canvas", "WebGL", "Other"]},
            {"name": "engine.licenseType", "type": "enum", "required": True,
             "options": ["Free/Open Source", "Personal License", "Commercial License", "Educational License",
                         "Indie License", "Enterprise License", "Not Applicable"]},
        ],
    },
    "assetLicenses": {
        "required": False,
        "recommended": True,
        "description": "Document all third-party assets used in your game",
        "fields": ["assetType", "assetName", "source", "licenseType", "attribution (if required)"],
    },
    "intellectualProperty": {
        "required": True,
        "fields": [
            {"name": "ownershipStatus", "type": "enum", "required": True,
             "options": ["Sole Owner", "Co-Owner", "Licensed", "Work for Hire", "Open Source"]},
            {"name": "copyrightHolder", "type": "string", "required": True},
            {"name": "copyrightYear", "type": "number", "required": True},
        ],
    },
    "fileUploads": {
        "required": False,
        "recommended": True,
        "formats": ["PDF", "JPG", "PNG", "DOC", "DOCX", "TXT"],
        "maxSize": "10MB per file",
        "types": list(FILE_KINDS),
    },
    "declarations": {
        "required": True,
        "mustAccept": [
            "ownershipConfirmed - Confirm you own or have rights to use all content",
            "noInfringement - Declare the game does not infringe on third-party rights",
            "accurateInformation - Confirm all provided information is accurate",
            "agreementAccepted - Accept the platform license agreement",
        ],
    },
}


class LicenseRequest(BaseModel):
    engine: Optional[Dict[str, Any]] = None
    assets: Optional[List[Dict[str, Any]]] = None
    intellectualProperty: Optional[Dict[str, Any]] = None
    declarations: Optional[Dict[str, Any]] = None
    additionalNotes: Optional[str] = None


class LicenseReviewRequest(BaseModel):
    status: Optional[str] = None
    rejectionReason: Optional[str] = None
    notes: Optional[str] = None
    complianceChecks: Optional[Dict[str, Any]] = None


def _errors(exc: ValidationError) -> List[str]:
    return [f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors()]


def license_out(license_doc: Dict[str, Any]) -> Dict[str, Any]:
    out = serialize(license_doc)
    out["uploadedFiles"] = [{k: v for k, v in f.items() if k != "filePath"} for f in out.get("uploadedFiles", [])]
    out["completionPercentage"] = compliance.completion_percentage(license_doc)
    out["isComplete"] = compliance.is_complete(license_doc)
    out["missingItems"] = compliance.missing_items(license_doc)
    out["summary"] = compliance.validation_summary(license_doc)
    return out


def _license_or_404(game_id: str, message: str = "License information not found for this game") -> Dict[str, Any]:
    license_doc = db["license"].find_one({"gameId": game_id})
    if not license_doc:
        raise HTTPException(status_code=404, detail=message)
    return license_doc


# ---------------------------------------------------------------------
# Developer
# ---------------------------------------------------------------------

@dev_router.get("/licenses/requirements")
def license_requirements(current: Principal = Depends(developer_only)):
    return {"message": "License requirements loaded", "requirements": REQUIREMENTS}


@dev_router.get("/licenses")
def developer_licenses(current: Principal = Depends(developer_only)):
    licenses = []
    for license_doc in db["license"].find({"developerId": current.user_id}).sort("updatedAt", -1):
        game = db["game"].find_one({"_id": to_object_id(license_doc["gameId"])}) or {}
        licenses.append({
            "id": str(license_doc["_id"]),
            "game": {"id": license_doc["gameId"], "title": game.get("title"), "gameUrl": game.get("gameUrl")},
            "completionPercentage": compliance.completion_percentage(license_doc),
            "isComplete": compliance.is_complete(license_doc),
            "validation": compliance.validation_summary(license_doc),
            "submittedAt": serialize(license_doc.get("submittedAt")),
            "updatedAt": serialize(license_doc.get("updatedAt")),
        })
    return {"message": "Licenses loaded", "count": len(licenses), "licenses": licenses}


@dev_router.get("/games/{game_id}/license")
def get_license(game_id: str, current: Principal = Depends(developer_only)):
    own_game(game_id, current)
    return {"message": "License loaded", "license": license_out(_license_or_404(game_id))}


@dev_router.post("/games/{game_id}/license")
@dev_router.put("/games/{game_id}/license")
def save_license(game_id: str, req: LicenseRequest, request: Request, current: Principal = Depends(developer_only)):
    own_game(game_id, current)
    engine = req.engine or {}
    ip = req.intellectualProperty or {}
    declarations = req.declarations or {}

    errors = []
    if not engine.get("name"):
        errors.append("Engine name is required")
    if not engine.get("licenseType"):
        errors.append("Engine license type is required")
    if not ip.get("ownershipStatus"):
        errors.append("Ownership status is required")
    if not ip.get("copyrightHolder"):
        errors.append("Copyright holder is required")
    if not ip.get("copyrightYear"):
        errors.append("Copyright year is required")
    if not declarations.get("ownershipConfirmed"):
        errors.append("You must confirm ownership")
    if not declarations.get("noInfringement"):
        errors.append("You must declare no infringement")
    if not declarations.get("accurateInformation"):
        errors.append("You must confirm information accuracy")
    if not declarations.get("agreementAccepted"):
        errors.append("You must accept the agreement")
    if errors:
        raise HTTPException(status_code=400, detail={"message": "Validation error", "errors": errors})

    try:
        content = {
            "engine": Engine.model_validate(engine).model_dump(by_alias=True),
            "assets": [Asset.model_validate(a).model_dump(by_alias=True) for a in (req.assets or [])],
            "intellectualProperty": IntellectualProperty.model_validate(ip).model_dump(by_alias=True),
            "declarations": {
                **Declarations.model_validate(declarations).model_dump(by_alias=True),
                "declaredAt": utcnow(),
                "ipAddress": request.client.host if request.client else None,
            },
            "additionalNotes": sanitize_input(req.additionalNotes),
        }
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail={"message": "Validation error", "errors": _errors(exc)})

    existing = db["license"].find_one({"gameId": game_id})
    if existing is None:
        license_doc = License(game_id=game_id, developer_id=current.user_id).model_dump(by_alias=True)
        license_doc.update(content)
        try:
            create_document("license", license_doc)
        except DuplicateKeyError:
            raise HTTPException(status_code=409, detail="License information was created concurrently, please retry")
        logger.info("License created for game %s", game_id)
        return {"message": "License information submitted successfully", "license": license_out(_license_or_404(game_id))}

    status = existing.get("validation", {}).get("status")
    if status not in LICENSE_EDITABLE:
        raise HTTPException(status_code=403, detail="License information cannot be edited while it is in review or approved")
    updated = db["license"].find_one_and_update(
        {"_id": existing["_id"], "validation.status": status},
        {"$set": {**content, "lastModifiedBy": current.user_id, "updatedAt": utcnow()}, "$inc": {"version": 1}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise HTTPException(status_code=409, detail="License status changed concurrently, please retry")
    return {"message": "License information updated successfully", "license": license_out(updated)}


@dev_router.post("/games/{game_id}/license/files")
def upload_license_files(
    game_id: str,
    files: List[UploadFile] = File(...),
    fileType: str = Form("Other"),
    description: Optional[str] = Form(None),
    current: Principal = Depends(developer_only),
):
    own_game(game_id, current)
    license_doc = _license_or_404(game_id, "License information not found. Please submit license information first.")
    if fileType not in FILE_KINDS:
        raise HTTPException(status_code=400, detail=f"File type must be one of: {', '.join(FILE_KINDS)}")

    records = []
    try:
        for upload in files:
            stored = save_upload(upload, "licenses", LICENSE_FILE_TYPES, MAX_LICENSE_FILE_BYTES)
            records.append({
                "id": str(ObjectId()),
                "fileType": fileType,
                "fileName": stored["originalName"],
                "storedName": stored["fileName"],
                "filePath": stored["filePath"],
                "fileUrl": stored["fileUrl"],
                "fileSize": stored["fileSize"],
                "mimeType": stored["mimeType"],
                "uploadedAt": utcnow(),
                "description": sanitize_input(description),
            })
    except HTTPException:
        for record in records:
            remove_upload(record["filePath"])
        raise

    license_doc = db["license"].find_one_and_update(
        {"_id": license_doc["_id"]},
        {"$push": {"uploadedFiles": {"$each": records}}, "$set": {"updatedAt": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    return {
        "message": f"{len(records)} license file(s) uploaded successfully",
        "uploadedFiles": [{k: v for k, v in r.items() if k != "filePath"} for r in serialize(records)],
        "licenseStatus": {
            "completionPercentage": compliance.completion_percentage(license_doc),
            "totalFiles": len(license_doc.get("uploadedFiles", [])),
        },
    }


@dev_router.delete("/games/{game_id}/license/files/{file_id}")
def delete_license_file(game_id: str, file_id: str, current: Principal = Depends(developer_only)):
    own_game(game_id, current)
    license_doc = _license_or_404(game_id, "License not found")
    record = next((f for f in license_doc.get("uploadedFiles", []) if f.get("id") == file_id), None)
    if record is None:
        raise HTTPException(status_code=404, detail="File not found")

    license_doc = db["license"].find_one_and_update(
        {"_id": license_doc["_id"]},
        {"$pull": {"uploadedFiles": {"id": file_id}}, "$set": {"updatedAt": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    remove_upload(record.get("filePath"))
    return {"message": "License file deleted successfully", "remainingFiles": len(license_doc.get("uploadedFiles", []))}


@dev_router.post("/games/{game_id}/license/submit")
def submit_license(game_id: str, current: Principal = Depends(developer_only)):
    own_game(game_id, current)
    license_doc = _license_or_404(game_id, "License information not found. Please submit license information first.")
    if not compliance.is_complete(license_doc):
        raise HTTPException(status_code=400, detail={
            "message": "License information is incomplete",
            "completionPercentage": compliance.completion_percentage(license_doc),
            "missingItems": compliance.missing_items(license_doc),
        })

    status = license_doc.get("validation", {}).get("status")
    ensure_transition(status, LICENSE_IN_REVIEW, LICENSE_TRANSITIONS)
    checks = compliance.automatic_checks(license_doc)
    now = utcnow()
    updated = db["license"].find_one_and_update(
        {"_id": license_doc["_id"], "validation.status": status},
        {"$set": {
            "validation.status": LICENSE_IN_REVIEW,
            "validation.complianceChecks": checks,
            "submittedAt": now,
            "lastModifiedBy": current.user_id,
            "updatedAt": now,
        }},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise HTTPException(status_code=409, detail="License status changed concurrently, please retry")
    logger.info("License for game %s submitted for review", game_id)
    return {
        "message": "License information submitted for review successfully. You will be notified once the review "
                   "is complete.",
        "validation": {
            "status": LICENSE_IN_REVIEW,
            "submittedAt": serialize(now),
            "complianceChecks": checks,
            "completionPercentage": compliance.completion_percentage(updated),
        },
    }


# ---------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------

@admin_router.get("")
def list_licenses(status: Optional[str] = None, current: Principal = Depends(admin_only)):
    filt: Dict[str, Any] = {}
    if status:
        filt["validation.status"] = status
    licenses = [license_out(lic) for lic in db["license"].find(filt).sort([("submittedAt", 1), ("_id", 1)])]
    return {"message": "Licenses loaded", "count": len(licenses), "licenses": licenses}


@admin_router.put("/{license_id}/review")
def review_license(license_id: str, req: LicenseReviewRequest, current: Principal = Depends(admin_only)):
    license_doc = db["license"].find_one({"_id": to_object_id(license_id)})
    if not license_doc:
        raise HTTPException(status_code=404, detail="License not found")
    if req.status not in LICENSE_DECISIONS:
        raise HTTPException(status_code=400, detail=f"Status must be one of: {', '.join(LICENSE_DECISIONS)}")
    reason = sanitize_input(req.rejectionReason)
    if req.status == LICENSE_REJECTED and not reason:
        raise HTTPException(status_code=400, detail="Rejection reason is required")

    status = license_doc.get("validation", {}).get("status")
    ensure_transition(status, req.status, LICENSE_TRANSITIONS)

    checks = {**license_doc.get("validation", {}).get("complianceChecks", {}), **(req.complianceChecks or {})}
    try:
        checks = ComplianceChecks.model_validate(checks).model_dump(by_alias=True)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail={"message": "Validation error", "errors": _errors(exc)})

    now = utcnow()
    updated = db["license"].find_one_and_update(
        {"_id": license_doc["_id"], "validation.status": status},
        {"$set": {
            "validation.status": req.status,
            "validation.reviewedBy": current.user_id,
            "validation.reviewedAt": now,
            "validation.rejectionReason": reason,
            "validation.notes": sanitize_input(req.notes),
            "validation.complianceChecks": checks,
            "updatedAt": now,
        }},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise HTTPException(status_code=409, detail="License status changed concurrently, please retry")
    logger.info("License %s reviewed by %s: %s", license_id, current.user_id, req.status)
    return {"message": f"License {req.status.lower()}", "license": license_out(updated)}
