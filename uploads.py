"""File upload helpers: validation, Supabase Storage, and data-URL fallback."""

from __future__ import annotations

import base64
import mimetypes
import os
import time
import uuid
from dataclasses import dataclass
from typing import Optional, Sequence

from werkzeug.utils import secure_filename

from backend import log_supabase_error
from errors import ConfigurationError, RemoteDataError, ValidationError

AVATAR_MAX_BYTES = 5 * 1024 * 1024  # 5MB
MEDIA_MAX_BYTES = 50 * 1024 * 1024  # 50MB
IMAGE_CLASSES = ("image/",)
MEDIA_CLASSES = ("image/", "video/", "audio/")
CACHE_CONTROL_SECONDS = "3600"


@dataclass
class UploadPayload:
    filename: str
    mime_type: str
    size: int
    data: bytes


@dataclass
class StoredObject:
    path: str
    public_url: str


def read_upload(file_storage) -> UploadPayload:
    """Read a Werkzeug FileStorage into memory and work out its MIME type."""
    if not file_storage or not getattr(file_storage, "filename", ""):
        raise ValidationError("Please choose a file to upload.")

    file_storage.stream.seek(0)
    data = file_storage.read()
    mime_type = (getattr(file_storage, "mimetype", "") or "").lower()
    if not mime_type or mime_type == "application/octet-stream":
        guessed, _ = mimetypes.guess_type(file_storage.filename)
        mime_type = (guessed or mime_type or "application/octet-stream").lower()
    return UploadPayload(
        filename=file_storage.filename,
        mime_type=mime_type,
        size=len(data),
        data=data,
    )


def validate_upload(upload: UploadPayload, allowed_classes: Sequence[str], max_bytes: int) -> None:
    """Reject wrong media classes and oversized files before any network call."""
    if not any(upload.mime_type.startswith(prefix) for prefix in allowed_classes):
        if tuple(allowed_classes) == IMAGE_CLASSES:
            raise ValidationError("Please select an image file.")
        raise ValidationError(f"{upload.filename} is not a photo, video or audio file.")
    if upload.size > max_bytes:
        limit_mb = max_bytes // (1024 * 1024)
        raise ValidationError(f"{upload.filename} is too large. Maximum size is {limit_mb}MB.")


def to_data_url(upload: UploadPayload) -> str:
    encoded = base64.b64encode(upload.data).decode("ascii")
    return f"data:{upload.mime_type};base64,{encoded}"


def build_object_key(filename: str, user_id: str, folder: Optional[str] = None) -> str:
    """`<user>/<folder>/<random>-<millis>.<ext>`, unique per upload."""
    _, ext = os.path.splitext(secure_filename(filename))
    stamp = int(time.time() * 1000)
    name = f"{uuid.uuid4().hex[:12]}-{stamp}{ext.lower()}"
    if folder:
        return f"{user_id}/{folder}/{name}"
    return f"{user_id}/{name}"


def store_file(client, upload: UploadPayload, bucket: str, folder: Optional[str], user_id: str) -> StoredObject:
    """Upload to a Supabase Storage bucket and return the stored path and public URL."""
    if not client:
        raise ConfigurationError("File storage is not configured.")

    object_key = build_object_key(upload.filename, user_id, folder)
    storage = client.storage.from_(bucket)
    try:
        res = storage.upload(
            object_key,
            upload.data,
            {
                "content-type": upload.mime_type,
                "cache-control": CACHE_CONTROL_SECONDS,
                "upsert": "false",
            },
        )
        stored_path = getattr(res, "path", None) or object_key
        public_url = storage.get_public_url(stored_path)
    except Exception as exc:
        log_supabase_error(f"uploading {object_key} to {bucket}", exc)
        raise RemoteDataError("Failed to upload file. Please try again.") from exc

    return StoredObject(path=stored_path, public_url=str(public_url).rstrip("?"))


def delete_file(client, path: str, bucket: str) -> bool:
    if not client:
        raise ConfigurationError("File storage is not configured.")
    try:
        client.storage.from_(bucket).remove([path])
    except Exception as exc:
        log_supabase_error(f"deleting {path} from {bucket}", exc)
        raise RemoteDataError("Failed to delete file.") from exc
    return True


def path_from_public_url(url: Optional[str], bucket: str) -> Optional[str]:
    """Recover the stored object path from a public bucket URL, if it is one."""
    if not url or url.startswith("data:"):
        return None
    marker = f"/object/public/{bucket}/"
    if marker not in url:
        return None
    path = url.split(marker, 1)[1].split("?", 1)[0]
    return path or None
