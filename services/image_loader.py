"""
Image acquisition: fetch image bytes from a URL, a local path or a base64
payload, check their magic bytes, and re-encode them with Pillow when the PDF
renderer rejects the raw bytes.
"""

import base64
import binascii
import io
import logging
import os
import re
from typing import Optional

import aiofiles
import requests
from fastapi.concurrency import run_in_threadpool
from PIL import Image, ImageOps, UnidentifiedImageError

import config
from models.errors import ImageProcessingError
from services.staging import stager

logger = logging.getLogger(__name__)

PNG_MAGIC = b'\x89PNG'
JPEG_MAGIC = b'\xff\xd8\xff'
GIF_MAGIC = b'GIF'

MIN_IMAGE_BYTES = 10

_NON_BASE64 = re.compile(r'[^A-Za-z0-9+/=]')


def strip_data_url_prefix(data) -> str:
    """Turn 'data:image/png;base64,XXXX' into 'XXXX'"""
    text = str(data or '')
    if text.startswith('data:image') and ',' in text:
        return text.split(',', 1)[1]
    return text


def clean_base64(image_data) -> str:
    if image_data is None:
        raise ImageProcessingError("imageData vide", "empty_image_data")
    cleaned = _NON_BASE64.sub('', strip_data_url_prefix(image_data))
    if not cleaned:
        raise ImageProcessingError(
            "imageData après nettoyage est vide", "empty_image_data")
    return cleaned


def decode_base64_image(image_data) -> bytes:
    cleaned = clean_base64(image_data)
    # Payloads from chat agents often lose their trailing padding
    cleaned += '=' * (-len(cleaned) % 4)
    try:
        return base64.b64decode(cleaned)
    except (binascii.Error, ValueError) as e:
        raise ImageProcessingError(
            f"Base64 invalide: {e}", "invalid_base64")


def fetch_url_bytes(url: str, timeout: Optional[int] = None) -> bytes:
    """Download url, following redirects; any failure, non-200 included, is a 500"""
    timeout = timeout or config.IMAGE_FETCH_TIMEOUT
    try:
        response = requests.get(url, timeout=timeout, allow_redirects=True)
    except requests.exceptions.Timeout:
        raise ImageProcessingError(
            "Timeout téléchargement image", "image_fetch_timeout",
            details={"url": url, "timeout_seconds": timeout}, status_code=500)
    except requests.exceptions.RequestException as e:
        raise ImageProcessingError(
            f"Téléchargement impossible pour {url}: {e}", "image_fetch_error",
            details={"url": url, "error": str(e)}, status_code=500)

    if response.status_code != 200:
        raise ImageProcessingError(
            f"HTTP {response.status_code} pour {url}", "image_fetch_error",
            details={"url": url, "status_code": response.status_code}, status_code=500)

    if response.history:
        logger.info(f"Followed {len(response.history)} redirect(s) to {response.url}")
    return response.content


async def fetch_url_cached(url: str) -> bytes:
    """Fetch url through the staging cache"""
    cached = await stager.lookup(url)
    if cached is not None:
        return cached
    data = await run_in_threadpool(fetch_url_bytes, url)
    await stager.stage(url, data)
    return data


async def read_local_image(image_path: str) -> bytes:
    full_path = os.path.abspath(image_path)
    if not os.path.exists(full_path):
        raise ImageProcessingError(
            f"Fichier image introuvable: {full_path} (cwd={os.getcwd()}). "
            f"Vérifie le déploiement et/ou utilise imageUrl.",
            "image_not_found",
            details={"path": full_path})
    async with aiofiles.open(full_path, 'rb') as image_file:
        return await image_file.read()


async def load_image_bytes(image_url: Optional[str] = None,
                           image_path: Optional[str] = None,
                           image_base64: Optional[str] = None) -> bytes:
    """Load image bytes from the first source given: URL, path, then base64"""
    if image_url:
        return await fetch_url_cached(image_url)
    if image_path:
        return await read_local_image(image_path)
    if image_base64:
        return decode_base64_image(image_base64)
    raise ImageProcessingError(
        "Aucune source d'image fournie (imageUrl | imagePath | image base64).",
        "missing_image_source")


def detect_image_type(data: bytes) -> Optional[str]:
    if data.startswith(PNG_MAGIC):
        return 'PNG'
    if data.startswith(JPEG_MAGIC):
        return 'JPEG'
    if data.startswith(GIF_MAGIC):
        return 'GIF'
    return None


def magic_bytes(data: bytes) -> str:
    return ' '.join(f"{b:02x}" for b in data[:4])


def validate_image_bytes(data) -> Optional[str]:
    """
    Check that data looks like an image and return its detected type.

    Unknown formats are only logged: the renderer or Pillow may still
    understand them.
    """
    if not isinstance(data, (bytes, bytearray)):
        raise ImageProcessingError("Image non Buffer", "invalid_image_data")
    if len(data) < MIN_IMAGE_BYTES:
        raise ImageProcessingError(
            f"Image trop petite ({len(data)} octets)", "image_too_small",
            details={"size_bytes": len(data)})

    image_type = detect_image_type(bytes(data))
    logger.info(f"Image validation - type: {image_type or 'unknown'} | Magic: {magic_bytes(data)}")
    if image_type is None:
        logger.warning("Unrecognised image format, trying the renderer anyway")
    return image_type


def normalize_image(data: bytes, image_format: str = 'png') -> bytes:
    """Re-encode data as PNG or JPEG, applying its EXIF orientation"""
    try:
        with Image.open(io.BytesIO(data)) as source:
            image = ImageOps.exif_transpose(source)
            output = io.BytesIO()
            if image_format == 'png':
                if image.mode not in ('1', 'L', 'LA', 'P', 'RGB', 'RGBA', 'I'):
                    image = image.convert('RGBA')
                image.save(output, format='PNG', optimize=True, compress_level=9)
            else:
                if image.mode != 'RGB':
                    image = image.convert('RGB')
                image.save(output, format='JPEG', quality=90, subsampling=0)
            return output.getvalue()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        raise ImageProcessingError(
            f"Normalisation de l'image impossible: {e}", "image_normalization_error",
            details={"format": image_format, "error_class": type(e).__name__})
