# media.py: GridFS uploads + public streaming
from __future__ import annotations

import os
from datetime import datetime
from typing import List, Optional, Tuple

import gridfs
from gridfs.errors import NoFile
from bson import ObjectId
from flask import Blueprint, abort, send_file
from werkzeug.utils import secure_filename

from db import db

media_bp = Blueprint("media", __name__)

# --- GridFS bucket ---
fs = gridfs.GridFS(db)

ALLOWED_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp"}
MAX_IMAGE_MB = int(os.getenv("MAX_IMAGE_MB", "5"))
MAX_FILES = 10


def _allowed_file(filename: str) -> bool:
    return "." in filename and filename.rsplit(".", 1)[1].lower() in ALLOWED_EXTENSIONS


def media_url(file_id) -> str:
    return f"/media/{file_id}"


def store_image(file_storage, uploaded_by=None) -> Tuple[Optional[dict], Optional[str]]:
    """Validate one uploaded image and put it in GridFS. Returns (image doc, error)."""
    original = secure_filename(file_storage.filename or "")
    if not original or not _allowed_file(original):
        return None, f"Unsupported file type: {file_storage.filename or 'upload'}"
    data = file_storage.read()
    if not data:
        return None, f"Empty file: {original}"
    if len(data) > MAX_IMAGE_MB * 1024 * 1024:
        return None, f"{original} exceeds {MAX_IMAGE_MB}MB"

    fid = fs.put(
        data,
        filename=original,
        content_type=file_storage.mimetype or "application/octet-stream",
        uploaded_by=str(uploaded_by) if uploaded_by else None,
        created_at=datetime.utcnow(),
    )
    return {"url": media_url(fid), "key": str(fid), "alt": os.path.splitext(original)[0]}, None


def store_images(files: List, uploaded_by=None) -> Tuple[List[dict], Optional[str]]:
    if len(files) > MAX_FILES:
        return [], f"At most {MAX_FILES} images per upload"
    out = []
    for f in files:
        img, err = store_image(f, uploaded_by)
        if err:
            for done in out:
                fs.delete(ObjectId(done["key"]))
            return [], err
        out.append(img)
    return out, None


@media_bp.route("/media/<file_id>", methods=["GET"])
def get_media(file_id: str):
    try:
        fid = ObjectId(file_id)
    except Exception:
        abort(404)

    try:
        gfile = fs.get(fid)
    except NoFile:
        abort(404)

    return send_file(
        gfile,
        mimetype=getattr(gfile, "content_type", None) or "application/octet-stream",
        download_name=gfile.filename or file_id,
        max_age=86400,
    )
