# institute_api/uploads.py
import logging
import os
import random
import time

from institute_api import config
from institute_api.errors import ValidationFailed

logger = logging.getLogger(__name__)

ADMISSION_PHOTO_DIR = "admissions"
ALLOWED_EXTENSIONS = {".jpeg", ".jpg", ".png", ".gif"}
ALLOWED_MIMETYPES = {"image/jpeg", "image/jpg", "image/png", "image/gif"}


def photo_filename(original_name: str) -> str:
    ext = os.path.splitext(original_name)[1].lower()
    suffix = f"{int(time.time() * 1000)}-{random.randint(0, 10**9)}"
    return f"student-{suffix}{ext}"


def save_admission_photo(upload, upload_root: str = None) -> str:
    """Persist an uploaded photo and return its public URL path."""
    upload_root = upload_root or config.UPLOAD_DIR
    ext = os.path.splitext(upload.filename or "")[1].lower()
    if ext not in ALLOWED_EXTENSIONS or (upload.content_type or "").lower() not in ALLOWED_MIMETYPES:
        raise ValidationFailed("Only image files are allowed (JPEG, JPG, PNG, GIF)")

    data = upload.file.read(config.MAX_PHOTO_BYTES + 1)
    if len(data) > config.MAX_PHOTO_BYTES:
        raise ValidationFailed("Photo exceeds the maximum upload size")

    directory = os.path.join(upload_root, ADMISSION_PHOTO_DIR)
    os.makedirs(directory, exist_ok=True)
    filename = photo_filename(upload.filename)
    with open(os.path.join(directory, filename), "wb") as fh:
        fh.write(data)
    logger.info("Stored admission photo %s (%d bytes)", filename, len(data))
    return f"/uploads/{ADMISSION_PHOTO_DIR}/{filename}"


def delete_upload(url: str, upload_root: str = None):
    upload_root = upload_root or config.UPLOAD_DIR
    if not url or not url.startswith("/uploads/"):
        return
    relative = url[len("/uploads/"):]
    path = os.path.normpath(os.path.join(upload_root, relative))
    if not path.startswith(os.path.normpath(upload_root) + os.sep):
        logger.warning("Refusing to delete %s outside the upload directory", url)
        return
    try:
        os.remove(path)
        logger.info("Deleted upload %s", url)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Could not delete upload %s: %s", url, e)
