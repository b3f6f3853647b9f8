"""
Shared utilities for the application.
"""

import base64
from io import BytesIO
from typing import List, Optional

import PIL.Image
from fastapi import UploadFile


def decode_images_b64(images_b64: List[str]) -> List[bytes]:
    """
    Decode a list of Base64 strings (plain or data: URLs) to bytes,
    silently ignoring errors.
    """
    out: List[bytes] = []
    for s in images_b64 or []:
        if not s:
            continue
        try:
            out.append(base64.b64decode(strip_data_url(s), validate=False))
        except (ValueError, TypeError):
            continue
    return out


def strip_data_url(value: str) -> str:
    """'data:image/png;base64,xxx' -> 'xxx'，普通 base64 原样返回"""
    if value.startswith("data:") and "," in value:
        return value.split(",", 1)[1]
    return value


def guess_image_mime(image_bytes: bytes, default: str = "image/jpeg") -> str:
    try:
        with PIL.Image.open(BytesIO(image_bytes)) as img:
            return PIL.Image.MIME.get(img.format or "", default)
    except (OSError, ValueError):
        return default


def to_data_url(image_b64: str, mime_type: Optional[str] = None) -> str:
    """转换为自描述的 data: URL；已经是 data: URL 的保持不变"""
    if image_b64.startswith("data:"):
        return image_b64
    if mime_type is None:
        decoded = decode_images_b64([image_b64])
        mime_type = guess_image_mime(decoded[0]) if decoded else "image/jpeg"
    return f"data:{mime_type};base64,{image_b64}"


def bytes_to_data_url(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


async def read_upload_files(images: List[UploadFile]) -> List[bytes]:
    """Read bytes from a list of UploadFiles, silently ignoring errors."""
    images_bytes: List[bytes] = []
    for f in images or []:
        try:
            images_bytes.append(await f.read())
        # pylint: disable=broad-exception-caught
        except Exception:
            continue
    return images_bytes
