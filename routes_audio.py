import os
import re
import logging
from typing import Optional, List, Dict, Any

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from pydantic import BaseModel, ValidationError
from pymongo import ReturnDocument

from database import db, create_document, serialize, to_object_id, utcnow
from schemas import AudioFile
from security import Principal, require_roles, ROLE_ADMIN
from storage import save_upload, remove_upload
from validation import sanitize_input

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/audio", tags=["audio"])
admin_router = APIRouter(prefix="/api/admin/audio", tags=["audio"])

admin_only = require_roles(ROLE_ADMIN)

AUDIO_TYPES = ("audio/mpeg", "audio/wav", "audio/ogg", "audio/mp4", "audio/webm")
MAX_AUDIO_BYTES = 100 * 1024 * 1024
SORT_FIELDS = ("createdAt", "updatedAt", "title", "category", "duration", "playCount")
PUBLIC_FILTER = {"isPublic": True, "isActive": True}


class AudioUpdateRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    tags: Optional[List[str]] = None
    duration: Optional[int] = None
    isPublic: Optional[bool] = None
    isActive: Optional[bool] = None


class ConfirmTitleRequest(BaseModel):
    confirmTitle: Optional[str] = None


def _errors(exc: ValidationError) -> List[str]:
    return [f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors()]


def _split_tags(tags: Optional[str]) -> List[str]:
    if not tags:
        return []
    return [t for t in (sanitize_input(t) for t in tags.split(",")) if t]


def audio_out(audio: Dict[str, Any]) -> Dict[str, Any]:
    out = serialize(audio)
    out.pop("filePath", None)
    return out


def _audio_or_404(audio_id: str, filt: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    audio = db["audiofile"].find_one({"_id": to_object_id(audio_id), **(filt or {})})
    if not audio:
        raise HTTPException(status_code=404, detail="Audio file not found")
    return audio


# ---------------------------------------------------------------------
# Public library
# ---------------------------------------------------------------------

@router.get("")
def list_audio(
    category: Optional[str] = None,
    search: Optional[str] = None,
    sortBy: str = "createdAt",
    sortOrder: str = "desc",
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    filt: Dict[str, Any] = dict(PUBLIC_FILTER)
    if category:
        filt["category"] = category
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        filt["$or"] = [{"title": pattern}, {"description": pattern}, {"tags": pattern}]

    sort_field = sortBy if sortBy in SORT_FIELDS else "createdAt"
    direction = -1 if sortOrder == "desc" else 1
    total = db["audiofile"].count_documents(filt)
    cursor = (
        db["audiofile"].find(filt)
        .sort([(sort_field, direction), ("_id", direction)])
        .skip((page - 1) * limit)
        .limit(limit)
    )
    files = [audio_out(a) for a in cursor]
    return {
        "message": "Audio files loaded",
        "audioFiles": files,
        "pagination": {
            "currentPage": page,
            "totalPages": (total + limit - 1) // limit,
            "totalFiles": total,
            "limit": limit,
        },
    }


@router.get("/{audio_id}")
def get_audio(audio_id: str):
    return {"message": "Audio file loaded", "audioFile": audio_out(_audio_or_404(audio_id, PUBLIC_FILTER))}


@router.post("/{audio_id}/play")
def play_audio(audio_id: str):
    audio = db["audiofile"].find_one_and_update(
        {"_id": to_object_id(audio_id), **PUBLIC_FILTER},
        {"$inc": {"playCount": 1}},
        return_document=ReturnDocument.AFTER,
    )
    if not audio:
        raise HTTPException(status_code=404, detail="Audio file not found")
    return {"message": "Play recorded", "playCount": audio["playCount"]}


# ---------------------------------------------------------------------
# Admin management
# ---------------------------------------------------------------------

@admin_router.get("")
def admin_list_audio(category: Optional[str] = None, isActive: Optional[bool] = None,
                     current: Principal = Depends(admin_only)):
    filt: Dict[str, Any] = {}
    if category:
        filt["category"] = category
    if isActive is not None:
        filt["isActive"] = isActive
    files = [audio_out(a) for a in db["audiofile"].find(filt).sort([("createdAt", -1), ("_id", -1)])]
    return {"message": "Audio files loaded", "count": len(files), "audioFiles": files}


@admin_router.get("/stats")
def audio_stats(current: Principal = Depends(admin_only)):
    files = db["audiofile"]
    usage = list(files.aggregate([
        {"$group": {
            "_id": None,
            "totalPlays": {"$sum": "$playCount"},
            "totalSize": {"$sum": "$fileSize"},
            "totalDuration": {"$sum": "$duration"},
        }},
    ]))
    usage = usage[0] if usage else {"totalPlays": 0, "totalSize": 0, "totalDuration": 0}
    by_category = {row["_id"]: row["count"] for row in files.aggregate([
        {"$group": {"_id": "$category", "count": {"$sum": 1}}},
    ])}
    top = files.find({"isActive": True}).sort("playCount", -1).limit(10)
    return {
        "message": "Audio statistics loaded",
        "stats": {
            "overview": {
                "total": files.count_documents({}),
                "active": files.count_documents({"isActive": True}),
                "public": files.count_documents({"isPublic": True}),
            },
            "usage": {
                "totalPlays": usage["totalPlays"],
                "totalSize": usage["totalSize"],
                "totalDurationHours": round((usage["totalDuration"] or 0) / 3600, 2),
            },
            "byCategory": by_category,
            "topPlayed": [
                {"id": str(a["_id"]), "title": a["title"], "category": a["category"], "playCount": a["playCount"]}
                for a in top
            ],
        },
    }


@admin_router.post("", status_code=201)
def upload_audio(
    file: Optional[UploadFile] = File(None),
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    category: str = Form("meditation"),
    tags: Optional[str] = Form(None),
    duration: Optional[int] = Form(None),
    isPublic: bool = Form(True),
    isActive: bool = Form(True),
    current: Principal = Depends(admin_only),
):
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="No audio file uploaded")
    title = sanitize_input(title or "")
    if not title:
        raise HTTPException(status_code=400, detail="Title is required")

    stored = save_upload(file, "audio", AUDIO_TYPES, MAX_AUDIO_BYTES)
    try:
        audio = AudioFile(
            title=title,
            description=sanitize_input(description),
            file_name=stored["fileName"],
            file_path=stored["filePath"],
            file_url=stored["fileUrl"],
            file_size=stored["fileSize"],
            mime_type=stored["mimeType"],
            format=os.path.splitext(stored["originalName"])[1].lstrip(".").lower() or None,
            duration=duration,
            category=category,
            tags=_split_tags(tags),
            is_public=isPublic,
            is_active=isActive,
            uploaded_by=current.user_id,
        )
    except ValidationError as exc:
        remove_upload(stored["filePath"])
        raise HTTPException(status_code=400, detail={"message": "Validation error", "errors": _errors(exc)})

    audio_id = create_document("audiofile", audio)
    logger.info("Audio file %s uploaded by %s", audio_id, current.user_id)
    return {"message": "Audio file uploaded successfully", "audioFile": audio_out(_audio_or_404(audio_id))}


@admin_router.put("/{audio_id}")
def update_audio(audio_id: str, req: AudioUpdateRequest, current: Principal = Depends(admin_only)):
    audio = _audio_or_404(audio_id)
    updates = req.model_dump(exclude_none=True)
    if "title" in updates:
        updates["title"] = sanitize_input(updates["title"])
    if "description" in updates:
        updates["description"] = sanitize_input(updates["description"])
    if "tags" in updates:
        updates["tags"] = [t for t in (sanitize_input(t) for t in updates["tags"]) if t]
    if not updates:
        raise HTTPException(status_code=400, detail="No valid fields to update")

    try:
        merged = AudioFile.model_validate({**audio, **updates}).model_dump(by_alias=True)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail={"message": "Validation error", "errors": _errors(exc)})

    changes = {k: merged[k] for k in updates}
    audio = db["audiofile"].find_one_and_update(
        {"_id": audio["_id"]},
        {"$set": {**changes, "lastModifiedBy": current.user_id, "updatedAt": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    return {"message": "Audio file metadata updated successfully", "audioFile": audio_out(audio)}


@admin_router.delete("/{audio_id}")
def delete_audio(audio_id: str, req: ConfirmTitleRequest, current: Principal = Depends(admin_only)):
    audio = _audio_or_404(audio_id)
    if req.confirmTitle != audio["title"]:
        raise HTTPException(status_code=400, detail="Title confirmation does not match. Cannot delete audio file.")

    db["audiofile"].delete_one({"_id": audio["_id"]})
    remove_upload(audio.get("filePath"))
    logger.info("Audio file %s deleted by %s", audio_id, current.user_id)
    return {
        "message": "Audio file deleted successfully",
        "deletedAudioFile": {
            "id": str(audio["_id"]),
            "title": audio["title"],
            "category": audio["category"],
            "playCount": audio.get("playCount", 0),
        },
    }
