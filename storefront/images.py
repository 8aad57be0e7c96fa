import logging
import os
import secrets
import time
from io import BytesIO
from typing import Optional

from fastapi import UploadFile
from fastapi.staticfiles import StaticFiles
from PIL import Image, ImageOps, UnidentifiedImageError

from . import config
from .errors import UploadRejected

logger = logging.getLogger(__name__)

MAX_IMAGE_BYTES = 5 * 1024 * 1024  # 5 MB
IMAGE_SIZE = (300, 300)
URL_PREFIX = "/uploads/"

# extension -> (accepted mime type, Pillow format)
ALLOWED_TYPES = {
    ".jpg": ("image/jpeg", "JPEG"),
    ".jpeg": ("image/jpeg", "JPEG"),
    ".png": ("image/png", "PNG"),
}

REJECTED_MESSAGE = "Only JPEG and PNG images are allowed and file size must be less than 5MB"


def uploads_dir() -> str:
    path = config.get_settings().uploads_dir
    os.makedirs(path, exist_ok=True)
    return path


class UploadedImages(StaticFiles):
    """Serves files from the uploads directory configured at request time."""

    def __init__(self):
        super().__init__(directory=uploads_dir())

    def lookup_path(self, path):
        self.all_directories = [uploads_dir()]
        return super().lookup_path(path)


def check_upload(filename: Optional[str], content_type: Optional[str], size: int) -> str:
    """Return the Pillow format for an acceptable upload, else raise UploadRejected."""
    ext = os.path.splitext(filename or "")[1].lower()
    allowed = ALLOWED_TYPES.get(ext)
    if allowed is None or allowed[0] != (content_type or "").lower() or size > MAX_IMAGE_BYTES:
        logger.warning("Rejected upload %r (%s, %d bytes)", filename, content_type, size)
        raise UploadRejected(REJECTED_MESSAGE)
    return allowed[1]


def fit_to_canvas(data: bytes) -> Image.Image:
    """Scale the image to fit IMAGE_SIZE and centre it on a white canvas."""
    try:
        with Image.open(BytesIO(data)) as img:
            img = ImageOps.exif_transpose(img).convert("RGB")
            img = ImageOps.contain(img, IMAGE_SIZE)
    except (UnidentifiedImageError, OSError) as e:
        raise UploadRejected("Failed to process image.") from e
    canvas = Image.new("RGB", IMAGE_SIZE, (255, 255, 255))
    offset = ((IMAGE_SIZE[0] - img.width) // 2, (IMAGE_SIZE[1] - img.height) // 2)
    canvas.paste(img, offset)
    return canvas


async def save_product_image(upload: UploadFile) -> str:
    """Validate, resize and store an uploaded image; returns its public URL."""
    data = await upload.read(MAX_IMAGE_BYTES + 1)
    image_format = check_upload(upload.filename, upload.content_type, len(data))
    canvas = fit_to_canvas(data)

    ext = os.path.splitext(upload.filename)[1].lower()
    filename = f"resized-{int(time.time() * 1000)}-{secrets.token_hex(4)}{ext}"
    canvas.save(os.path.join(uploads_dir(), filename), format=image_format)
    logger.info("Stored product image %s", filename)
    return URL_PREFIX + filename


def delete_image(image_url: Optional[str]) -> None:
    """Remove a stored image. Missing files are ignored, other errors only logged."""
    if not image_url or not image_url.startswith(URL_PREFIX):
        return
    path = os.path.join(config.get_settings().uploads_dir, os.path.basename(image_url))
    try:
        os.remove(path)
        logger.info("Deleted old product image: %s", path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Failed to delete old image %s: %s", path, e)
