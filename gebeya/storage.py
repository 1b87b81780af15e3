import logging
import os
from typing import List, Optional
from uuid import uuid4

from fastapi import HTTPException, UploadFile

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp"}


def allowed_image_extension(filename: str) -> bool:
    extension = os.path.splitext(filename)[1].lower().lstrip(".")
    return extension in ALLOWED_EXTENSIONS


class ImageStorage:
    """Stores uploaded images on local disk and hands back public URLs."""

    def __init__(self, root: str, base_url: str):
        self.root = root
        self.base_url = base_url.rstrip("/")

    def save(self, upload: UploadFile, folder: str, max_bytes: Optional[int] = None) -> str:
        if not upload or not upload.filename:
            raise HTTPException(status_code=400, detail="An image file is required")
        if not allowed_image_extension(upload.filename):
            raise HTTPException(
                status_code=400,
                detail="Unsupported image format. Upload PNG, JPG, JPEG, GIF, or WEBP files.",
            )
        data = upload.file.read()
        if max_bytes is not None and len(data) > max_bytes:
            raise HTTPException(status_code=400, detail=f"Image exceeds {max_bytes // (1024 * 1024)} MB limit")

        extension = os.path.splitext(upload.filename)[1].lower()
        unique_filename = f"{uuid4().hex}{extension}"
        directory = os.path.join(self.root, folder)
        os.makedirs(directory, exist_ok=True)
        with open(os.path.join(directory, unique_filename), "wb") as fh:
            fh.write(data)
        logger.debug("Stored upload %s as %s/%s", upload.filename, folder, unique_filename)
        return f"{self.base_url}/{folder}/{unique_filename}"

    def save_many(self, uploads: List[UploadFile], folder: str) -> List[str]:
        return [self.save(u, folder) for u in uploads if u is not None and u.filename]
