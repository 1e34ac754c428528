"""
CDN folder storage.

Uploads land in a temp folder first and are moved to the permanent folder
when the owning document is saved. Images are resized to fit inside
IMAGE_MAX_SIZE x IMAGE_MAX_SIZE and re-encoded as JPEG.
"""

import io
import logging
import os
import shutil
import time
from typing import List, Optional

from PIL import Image, ImageOps, UnidentifiedImageError

import config
from helpers import filename_without_extension, generate_token

logger = logging.getLogger(__name__)


def cdn_folders() -> List[str]:
    return [
        config.CDN_USERS,
        config.CDN_TEMP_USERS,
        config.CDN_CARS,
        config.CDN_TEMP_CARS,
        config.CDN_LOCATIONS,
        config.CDN_TEMP_LOCATIONS,
        config.CDN_CONTRACTS,
        config.CDN_LICENSES,
        config.CDN_TEMP_LICENSES,
    ]


def ensure_dirs() -> None:
    for folder in cdn_folders():
        os.makedirs(folder, exist_ok=True)


def check_filename(filename: Optional[str]) -> str:
    if not filename or filename in (".", "..") or ".." in filename or "/" in filename or "\\" in filename:
        raise ValueError(f"Invalid filename: {filename}")
    return filename


def path(folder: str, filename: str) -> str:
    return os.path.join(folder, check_filename(filename))


def exists(folder: str, filename: Optional[str]) -> bool:
    if not filename:
        return False
    try:
        return os.path.isfile(path(folder, filename))
    except ValueError:
        return False


def optimize_image(data: bytes) -> bytes:
    """Fit the image inside IMAGE_MAX_SIZE square and encode it as JPEG."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            img = ImageOps.exif_transpose(img)
            if img.mode in ("RGBA", "LA", "P"):
                img = img.convert("RGBA")
                background = Image.new("RGBA", img.size, (255, 255, 255, 255))
                img = Image.alpha_composite(background, img)
            img = img.convert("RGB")
            img.thumbnail((config.IMAGE_MAX_SIZE, config.IMAGE_MAX_SIZE), Image.LANCZOS)
            out = io.BytesIO()
            img.save(out, format="JPEG", quality=config.IMAGE_QUALITY, optimize=True)
            return out.getvalue()
    except (UnidentifiedImageError, OSError) as e:
        raise ValueError("Invalid image") from e


def write_file(folder: str, filename: str, data: bytes) -> str:
    os.makedirs(folder, exist_ok=True)
    with open(path(folder, filename), "wb") as f:
        f.write(data)
    return filename


def _timestamp() -> int:
    return int(time.time() * 1000)


def save_temp_image(folder: str, original_name: str, data: bytes) -> str:
    """Store an optimized upload under a unique name_<token>_<ms>.jpg filename."""
    stem = filename_without_extension(original_name) or "image"
    filename = f"{stem}_{generate_token()[:21]}_{_timestamp()}.jpg"
    return write_file(folder, filename, optimize_image(data))


def save_image(folder: str, stem: str, data: bytes) -> str:
    """Store an optimized image as <stem>_<ms>.jpg."""
    return write_file(folder, f"{stem}_{_timestamp()}.jpg", optimize_image(data))


def save_temp_file(folder: str, original_name: str, data: bytes) -> str:
    """Store a document upload unchanged, keeping its extension."""
    check_filename(os.path.basename(original_name))
    ext = os.path.splitext(original_name)[1].lower()
    stem = filename_without_extension(original_name) or "file"
    return write_file(folder, f"{stem}_{generate_token()[:21]}_{_timestamp()}{ext}", data)


def delete_file(folder: str, filename: Optional[str]) -> bool:
    if not exists(folder, filename):
        if filename:
            logger.warning(f"File not found: {os.path.join(folder, filename)}")
        return False
    os.remove(path(folder, filename))
    return True


def move_temp_file(src_folder: str, dst_folder: str, filename: str, new_name: Optional[str] = None) -> Optional[str]:
    """Move a temp upload into its permanent folder, return the stored filename."""
    if not exists(src_folder, filename):
        logger.warning(f"Temp file not found: {os.path.join(src_folder, filename)}")
        return None
    new_name = new_name or filename
    if "." not in new_name:
        new_name = f"{new_name}{os.path.splitext(filename)[1]}"
    os.makedirs(dst_folder, exist_ok=True)
    shutil.move(path(src_folder, filename), path(dst_folder, new_name))
    return new_name
