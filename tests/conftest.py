import io
import struct
import sys
import zlib
from pathlib import Path

import pytest
from PIL import Image

# Add the project root to the Python path
sys.path.append(str(Path(__file__).parent.parent))


class FakeMailer:
    """Records outgoing emails instead of talking to an SMTP relay."""

    def __init__(self):
        self.sent = []
        self.error = None

    def send(self, **kwargs):
        if self.error is not None:
            raise self.error
        self.sent.append(kwargs)
        return "<fake@test>"

    def verify(self):
        return True


def make_image(image_format: str = 'PNG', size=(40, 20), color='blue') -> bytes:
    buffer = io.BytesIO()
    Image.new('RGB', size, color).save(buffer, format=image_format)
    return buffer.getvalue()


def png_header(width: int, height: int) -> bytes:
    """PNG signature, IHDR and an empty IDAT: enough for Pillow to read the size"""
    def chunk(kind, data):
        return struct.pack('>I', len(data)) + kind + data + struct.pack('>I', zlib.crc32(kind + data))

    ihdr = struct.pack('>IIBBBBB', width, height, 8, 2, 0, 0, 0)
    return b'\x89PNG\r\n\x1a\n' + chunk(b'IHDR', ihdr) + chunk(b'IDAT', zlib.compress(b''))


@pytest.fixture
def oversized_png() -> bytes:
    return png_header(30000, 30000)


@pytest.fixture
def png_bytes() -> bytes:
    return make_image('PNG')


@pytest.fixture
def jpeg_bytes() -> bytes:
    return make_image('JPEG', size=(60, 30), color='red')


@pytest.fixture
def isolated_stager(tmp_path, monkeypatch):
    from services import image_loader
    from services.staging import FileStager

    stager = FileStager(directory=str(tmp_path / 'staging'), ttl_seconds=60)
    monkeypatch.setattr(image_loader, 'stager', stager)
    return stager


@pytest.fixture
def fake_mailer(monkeypatch):
    import main

    mailer = FakeMailer()
    monkeypatch.setattr(main, 'mailer', mailer)
    return mailer


@pytest.fixture
def client(fake_mailer, isolated_stager):
    from fastapi.testclient import TestClient
    import main

    return TestClient(main.app)
