"""
Uploaded media and playable files for a developer's game.

All writes are refused while the game is locked for review, and each one
filters its update on `isLocked` so a review that starts mid-request wins.
"""

import os
import logging
from typing import List, Dict, Any

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from pymongo import ReturnDocument

from database import db, serialize, utcnow
from routes_games import own_game, developer_only
from schemas import Screenshot
from security import Principal
from storage import UPLOAD_DIR, save_upload, remove_upload, remove_upload_dir, unpack_archive

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/dev/games", tags=["game-media"])

IMAGE_TYPES = ("image/jpeg", "image/png", "image/webp")
GAME_FILE_TYPES = (
    "application/zip", "application/x-zip-compressed", "application/x-zip", "text/html",
)
MAX_IMAGE_BYTES = 5 * 1024 * 1024
MAX_GAME_BYTES = 200 * 1024 * 1024
MAX_SCREENSHOTS = 5
MIN_SCREENSHOTS = 2
LOCKED = "Game is locked during review. Cannot modify media."
MEDIA_DIR = "game-media"
GAMES_DIR = "games"


def _unlocked_game(game_id: str, current: Principal) -> Dict[str, Any]:
    game = own_game(game_id, current)
    if game.get("isLocked"):
        raise HTTPException(status_code=403, detail=LOCKED)
    return game


def _set_unlocked(game: Dict[str, Any], changes: Dict[str, Any], current: Principal) -> Dict[str, Any]:
    updated = db["game"].find_one_and_update(
        {"_id": game["_id"], "isLocked": {"$ne": True}},
        {"$set": {**changes, "lastModifiedBy": current.user_id, "updatedAt": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise HTTPException(status_code=403, detail=LOCKED)
    return updated


def _media_path(file_name: str) -> str:
    return os.path.join(UPLOAD_DIR, MEDIA_DIR, file_name)


def _ordered(shots: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [Screenshot.model_validate({**s, "order": i}).model_dump(by_alias=True) for i, s in enumerate(shots)]


@router.get("/{game_id}/media")
def game_media(game_id: str, current: Principal = Depends(developer_only)):
    game = own_game(game_id, current)
    shots = game.get("screenshots") or []
    return {
        "message": "Game media loaded",
        "media": {
            "coverImageUrl": game.get("coverImageUrl"),
            "thumbnailUrl": game.get("thumbnailUrl"),
            "screenshots": shots,
            "gameUrl": game.get("gameUrl"),
        },
        "requirements": {
            "imageTypes": list(IMAGE_TYPES),
            "maxImageBytes": MAX_IMAGE_BYTES,
            "minScreenshots": MIN_SCREENSHOTS,
            "maxScreenshots": MAX_SCREENSHOTS,
            "gameFileTypes": list(GAME_FILE_TYPES),
            "maxGameBytes": MAX_GAME_BYTES,
        },
        "isComplete": bool(game.get("coverImageUrl")) and len(shots) >= MIN_SCREENSHOTS,
    }


@router.post("/{game_id}/cover")
def upload_cover(game_id: str, coverImage: UploadFile = File(...), current: Principal = Depends(developer_only)):
    game = _unlocked_game(game_id, current)
    stored = save_upload(coverImage, MEDIA_DIR, IMAGE_TYPES, MAX_IMAGE_BYTES)
    try:
        updated = _set_unlocked(game, {"coverImageUrl": stored["fileUrl"], "coverImagePath": stored["filePath"]}, current)
    except HTTPException:
        remove_upload(stored["filePath"])
        raise
    remove_upload(game.get("coverImagePath"))
    logger.info("Cover image for game %s replaced by %s", game_id, current.user_id)
    return {"message": "Cover image uploaded successfully", "coverImageUrl": stored["fileUrl"], "game": serialize(updated)}


@router.post("/{game_id}/screenshots")
def upload_screenshots(game_id: str, screenshots: List[UploadFile] = File(...),
                       current: Principal = Depends(developer_only)):
    game = _unlocked_game(game_id, current)
    existing = game.get("screenshots") or []
    total = len(existing) + len(screenshots)
    if total > MAX_SCREENSHOTS:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot add {len(screenshots)} screenshots. Maximum is {MAX_SCREENSHOTS} total "
                   f"(currently have {len(existing)}).",
        )
    if total < MIN_SCREENSHOTS:
        raise HTTPException(status_code=400, detail=f"Must upload at least {MIN_SCREENSHOTS} screenshots total for the game.")

    stored = []
    try:
        for upload in screenshots:
            stored.append(save_upload(upload, MEDIA_DIR, IMAGE_TYPES, MAX_IMAGE_BYTES))
        added = [{"url": s["fileUrl"], "fileName": s["fileName"]} for s in stored]
        game = _set_unlocked(game, {"screenshots": _ordered(existing + added)}, current)
    except HTTPException:
        for s in stored:
            remove_upload(s["filePath"])
        raise
    return {
        "message": f"{len(stored)} screenshot(s) uploaded successfully",
        "screenshots": game["screenshots"],
        "totalScreenshots": len(game["screenshots"]),
    }


@router.delete("/{game_id}/screenshots/{screenshot}")
def delete_screenshot(game_id: str, screenshot: str, current: Principal = Depends(developer_only)):
    """Remove one screenshot, addressed by its position or its stored file name."""
    game = _unlocked_game(game_id, current)
    shots = list(game.get("screenshots") or [])
    if screenshot.isdigit():
        index = int(screenshot)
    else:
        index = next((i for i, s in enumerate(shots) if s.get("fileName") == screenshot), -1)
    if index < 0 or index >= len(shots):
        raise HTTPException(status_code=404, detail="Screenshot not found")
    if len(shots) <= MIN_SCREENSHOTS:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot delete screenshot. Game must have at least {MIN_SCREENSHOTS} screenshots.",
        )

    removed = shots.pop(index)
    game = _set_unlocked(game, {"screenshots": _ordered(shots)}, current)
    if removed.get("fileName"):
        remove_upload(_media_path(removed["fileName"]))
    return {
        "message": "Screenshot deleted successfully",
        "screenshots": game["screenshots"],
        "remainingScreenshots": len(game["screenshots"]),
    }


@router.post("/{game_id}/file")
def upload_game_file(game_id: str, gameFile: UploadFile = File(...), current: Principal = Depends(developer_only)):
    """Store a single HTML file or a zip with an HTML entry point and point gameUrl at it."""
    game = _unlocked_game(game_id, current)
    ext = os.path.splitext(gameFile.filename or "")[1].lower()
    if ext not in (".zip", ".html"):
        raise HTTPException(status_code=400, detail="Invalid file type. Only ZIP and HTML files are allowed for games.")

    stored = save_upload(gameFile, GAMES_DIR, GAME_FILE_TYPES, MAX_GAME_BYTES)
    changes = {"gameUrl": stored["fileUrl"], "gameFilePath": stored["filePath"], "gameDirectory": None}
    unpacked = None
    try:
        if ext == ".zip":
            unpacked = unpack_archive(stored["filePath"], GAMES_DIR)
            changes.update({"gameUrl": unpacked["entryUrl"], "gameDirectory": unpacked["directory"]})
        updated = _set_unlocked(game, changes, current)
    except HTTPException:
        remove_upload(stored["filePath"])
        if unpacked:
            remove_upload_dir(unpacked["directory"])
        raise

    remove_upload(game.get("gameFilePath"))
    remove_upload_dir(game.get("gameDirectory"))
    logger.info("Game file for %s replaced by %s (%s)", game_id, current.user_id, stored["fileName"])
    return {
        "message": "Game file uploaded successfully",
        "gameUrl": updated["gameUrl"],
        "fileSize": stored["fileSize"],
        "files": unpacked["fileCount"] if unpacked else 1,
        "game": serialize(updated),
    }
