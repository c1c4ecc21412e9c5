import logging
import os
import uuid

from fastapi import UploadFile

from config.config import UPLOAD_DIR, MAX_UPLOAD_SIZE

logger = logging.getLogger(__name__)

PUBLIC_UPLOAD_PREFIX = "/uploads"

_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
}


class UploadRejected(Exception):
    """Raised when an upload is not an accepted image or is too large"""


async def save_image(upload: UploadFile, subdir: str = "logos", upload_dir: str = UPLOAD_DIR, max_size: int = MAX_UPLOAD_SIZE) -> str:
    """Store an uploaded image on local disk and return its public path."""
    content_type = (upload.content_type or "").lower()
    if content_type not in _EXTENSIONS:
        raise UploadRejected("Only image files are allowed")

    # read one byte past the cap so oversize files are detected without reading them whole
    data = await upload.read(max_size + 1)
    if len(data) > max_size:
        raise UploadRejected(f"File too large (max {max_size // (1024 * 1024)}MB)")
    if not data:
        raise UploadRejected("Uploaded file is empty")

    target_dir = os.path.join(upload_dir, subdir)
    os.makedirs(target_dir, exist_ok=True)
    filename = f"{uuid.uuid4().hex}{_EXTENSIONS[content_type]}"
    with open(os.path.join(target_dir, filename), "wb") as fh:
        fh.write(data)

    logger.info("Stored upload %s (%d bytes)", filename, len(data))
    return f"{PUBLIC_UPLOAD_PREFIX}/{subdir}/{filename}"
