"""
Tests for image acquisition, validation and normalisation.
"""

import asyncio
import base64

import pytest
import requests

from models.errors import ImageProcessingError
from services import image_loader
from services.image_loader import (clean_base64, decode_base64_image, detect_image_type,
                                   fetch_url_bytes, load_image_bytes, magic_bytes,
                                   normalize_image, validate_image_bytes)


class FakeResponse:
    def __init__(self, status_code=200, content=b'', url='http://example.test/img.png', history=None):
        self.status_code = status_code
        self.content = content
        self.url = url
        self.history = history or []


def test_clean_base64_strips_data_url_and_noise():
    payload = "data:image/png;base64,iVBO Rw0K\nGgo=\t"
    assert clean_base64(payload) == "iVBORw0KGgo="


def test_clean_base64_rejects_empty_payloads():
    with pytest.raises(ImageProcessingError) as exc_info:
        clean_base64("data:image/png;base64,$$$")
    assert "vide" in exc_info.value.message

    with pytest.raises(ImageProcessingError):
        clean_base64(None)


def test_decode_base64_restores_missing_padding(png_bytes):
    encoded = base64.b64encode(png_bytes).decode().rstrip('=')
    assert decode_base64_image(encoded) == png_bytes


def test_detect_image_type(png_bytes, jpeg_bytes):
    assert detect_image_type(png_bytes) == 'PNG'
    assert detect_image_type(jpeg_bytes) == 'JPEG'
    assert detect_image_type(b'GIF89a' + b'\x00' * 10) == 'GIF'
    assert detect_image_type(b'not an image at all') is None


def test_magic_bytes_are_lowercase_hex(png_bytes):
    assert magic_bytes(png_bytes) == "89 50 4e 47"


def test_validate_rejects_tiny_buffers():
    with pytest.raises(ImageProcessingError) as exc_info:
        validate_image_bytes(b'\x89PNG')
    assert exc_info.value.message == "Image trop petite (4 octets)"


def test_validate_rejects_non_bytes():
    with pytest.raises(ImageProcessingError):
        validate_image_bytes("not bytes")


def test_validate_lets_unknown_formats_through():
    assert validate_image_bytes(b'BM' + b'\x00' * 20) is None


def test_normalize_reencodes_jpeg_as_png(jpeg_bytes):
    normalized = normalize_image(jpeg_bytes, 'png')
    assert normalized.startswith(b'\x89PNG')


def test_normalize_to_jpeg(png_bytes):
    assert normalize_image(png_bytes, 'jpeg').startswith(b'\xff\xd8\xff')


def test_normalize_rejects_garbage():
    with pytest.raises(ImageProcessingError) as exc_info:
        normalize_image(b'\x00' * 64)
    assert exc_info.value.error_type == "image_normalization_error"


def test_normalize_rejects_oversized_images(oversized_png):
    with pytest.raises(ImageProcessingError) as exc_info:
        normalize_image(oversized_png)
    assert exc_info.value.error_type == "image_normalization_error"
    assert exc_info.value.details["error_class"] == "DecompressionBombError"


def test_fetch_reports_http_status(monkeypatch):
    monkeypatch.setattr(requests, 'get', lambda url, **kwargs: FakeResponse(status_code=404))

    with pytest.raises(ImageProcessingError) as exc_info:
        fetch_url_bytes('http://example.test/missing.png')
    assert exc_info.value.message == "HTTP 404 pour http://example.test/missing.png"
    assert exc_info.value.status_code == 500


def test_fetch_follows_redirects(monkeypatch, png_bytes):
    calls = []

    def fake_get(url, **kwargs):
        calls.append(kwargs)
        return FakeResponse(content=png_bytes, history=[FakeResponse(status_code=302)])

    monkeypatch.setattr(requests, 'get', fake_get)

    assert fetch_url_bytes('http://example.test/redirect') == png_bytes
    assert calls[0]['allow_redirects'] is True


def test_fetch_timeout(monkeypatch):
    def fake_get(url, **kwargs):
        raise requests.exceptions.Timeout()

    monkeypatch.setattr(requests, 'get', fake_get)

    with pytest.raises(ImageProcessingError) as exc_info:
        fetch_url_bytes('http://example.test/slow.png', timeout=1)
    assert exc_info.value.error_type == "image_fetch_timeout"


def test_url_fetches_are_served_from_staging(monkeypatch, isolated_stager, png_bytes):
    calls = []

    def fake_get(url, **kwargs):
        calls.append(url)
        return FakeResponse(content=png_bytes)

    monkeypatch.setattr(requests, 'get', fake_get)

    first = asyncio.run(load_image_bytes(image_url='http://example.test/a.png'))
    second = asyncio.run(load_image_bytes(image_url='http://example.test/a.png'))

    assert first == second == png_bytes
    assert calls == ['http://example.test/a.png']


def test_url_takes_priority_over_other_sources(monkeypatch, isolated_stager, png_bytes, jpeg_bytes):
    monkeypatch.setattr(requests, 'get', lambda url, **kwargs: FakeResponse(content=png_bytes))

    data = asyncio.run(load_image_bytes(
        image_url='http://example.test/b.png',
        image_base64=base64.b64encode(jpeg_bytes).decode(),
    ))
    assert data == png_bytes


def test_local_path_and_base64_sources(tmp_path, png_bytes, jpeg_bytes):
    image_path = tmp_path / 'logo.png'
    image_path.write_bytes(png_bytes)

    assert asyncio.run(load_image_bytes(image_path=str(image_path))) == png_bytes
    encoded = "data:image/jpeg;base64," + base64.b64encode(jpeg_bytes).decode()
    assert asyncio.run(load_image_bytes(image_base64=encoded)) == jpeg_bytes


def test_missing_local_file_names_the_path(tmp_path):
    missing = tmp_path / 'nope.png'
    with pytest.raises(ImageProcessingError) as exc_info:
        asyncio.run(image_loader.read_local_image(str(missing)))
    assert "introuvable" in exc_info.value.message
    assert str(missing) in exc_info.value.message


def test_no_source_is_an_error():
    with pytest.raises(ImageProcessingError) as exc_info:
        asyncio.run(load_image_bytes())
    assert exc_info.value.error_type == "missing_image_source"
