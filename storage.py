"""Local disk storage for uploaded files, served back under /uploads."""

import os
import uuid
import shutil
import zipfile
import logging
from typing import Iterable, Dict, Any

from fastapi import HTTPException, UploadFile

logger = logging.getLogger(__name__)

UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
UPLOAD_URL_PREFIX = "/uploads"


def save_upload(file: UploadFile, subdir: str, allowed_types: Iterable[str], max_bytes: int) -> Dict[str, Any]:
    """Write an upload to UPLOAD_DIR/subdir under a generated name and describe it."""
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="No file uploaded")
    if file.content_type not in set(allowed_types):
        raise HTTPException(status_code=400, detail=f"File type {file.content_type} is not allowed")

    content = file.file.read(max_bytes + 1)
    if len(content) > max_bytes:
        raise HTTPException(status_code=400, detail=f"File is too large. Maximum size is {max_bytes // (1024 * 1024)}MB")

    ext = os.path.splitext(file.filename)[1].lower()
    stored_name = f"{uuid.uuid4().hex}{ext}"
    folder = os.path.join(UPLOAD_DIR, subdir)
    os.makedirs(folder, exist_ok=True)
    path = os.path.join(folder, stored_name)
    with open(path, "wb") as fh:
        fh.write(content)

    logger.info("Stored upload %s (%d bytes)", path, len(content))
    return {
        "fileName": stored_name,
        "originalName": file.filename,
        "filePath": path,
        "fileUrl": f"{UPLOAD_URL_PREFIX}/{subdir}/{stored_name}",
        "fileSize": len(content),
        "mimeType": file.content_type,
    }


def remove_upload(path: str) -> bool:
    """Best-effort delete of a stored file."""
    if not path or not os.path.abspath(path).startswith(os.path.abspath(UPLOAD_DIR)):
        return False
    try:
        os.remove(path)
        return True
    except OSError:
        logger.warning("Could not remove upload %s", path)
        return False


def unpack_archive(path: str, subdir: str) -> Dict[str, Any]:
    """Extract a stored zip next to it and return the folder and its HTML entry file.

    Members that would land outside the target folder are refused.
    """
    stem = os.path.splitext(os.path.basename(path))[0]
    target = os.path.join(UPLOAD_DIR, subdir, stem)
    root = os.path.abspath(target)
    try:
        with zipfile.ZipFile(path) as archive:
            names = [n for n in archive.namelist() if not n.endswith("/")]
            for name in names:
                dest = os.path.abspath(os.path.join(root, name))
                if not dest.startswith(root + os.sep):
                    raise HTTPException(status_code=400, detail=f"Archive entry {name} is not allowed")
            archive.extractall(root)
    except zipfile.BadZipFile:
        raise HTTPException(status_code=400, detail="Failed to extract game files")

    html = sorted((n for n in names if n.lower().endswith(".html")), key=lambda n: (n.count("/"), n))
    entry = next((n for n in html if os.path.basename(n).lower() == "index.html"), html[0] if html else None)
    if entry is None:
        remove_upload_dir(target)
        raise HTTPException(status_code=400, detail="Game archive must contain an HTML entry file")
    logger.info("Unpacked %s into %s (%d files)", path, target, len(names))
    return {
        "directory": target,
        "entry": entry,
        "entryUrl": f"{UPLOAD_URL_PREFIX}/{subdir}/{stem}/{entry}",
        "fileCount": len(names),
    }


def remove_upload_dir(path: str) -> bool:
    """Best-effort delete of an unpacked folder under UPLOAD_DIR."""
    root = os.path.abspath(UPLOAD_DIR)
    if not path or not os.path.abspath(path).startswith(root + os.sep):
        return False
    shutil.rmtree(path, ignore_errors=True)
    return True
