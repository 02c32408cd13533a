"""
WalkLog Backend — Test Configuration (conftest.py)
====================================================

What:  Shared pytest fixtures for the entire test suite.
How:   Images are generated with Pillow (and pillow-heif for HEIC) at test
       time, so no binary fixtures live in the repo. The object store is an
       in-memory fake with the same method names and error shapes as a
       boto3 S3 client.

Builders:  make_image_bytes, make_gradient_jpeg, encode_heic, make_rgb_icc_profile

Fixture Overview:
    Images:   jpeg_bytes, png_alpha_bytes, webp_bytes, gif_bytes, bmp_bytes,
              rotated_jpeg_bytes, large_jpeg_bytes, heic_bytes
    Storage:  fake_s3, blob_store
    HTTP:     test_client (dependencies point at the fake store)
"""

import io
import os
import struct
from typing import Dict, Optional

# Override settings BEFORE any walklog import reads them
os.environ["S3_ENDPOINT_URL"] = "http://garage.test:3900"
os.environ["S3_REGION"] = "garage"
os.environ["S3_ACCESS_KEY_ID"] = "GKtestkey"
os.environ["S3_SECRET_ACCESS_KEY"] = "test-secret-not-real"
os.environ["S3_BUCKET"] = "walklog-test"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["RATE_LIMIT_REQUESTS"] = "10000"

import pytest
import pytest_asyncio
from botocore.exceptions import ClientError, EndpointConnectionError
from botocore.response import StreamingBody
from httpx import ASGITransport, AsyncClient
from PIL import Image

from walklog.services.blob_store import BlobStoreGateway, StorageMetrics


# ══════════════════════════════════════════════════════════════════════════
# Image builders
# ══════════════════════════════════════════════════════════════════════════

ORIENTATION_TAG = 0x0112


def make_image_bytes(
    fmt: str,
    size=(64, 48),
    mode: str = "RGB",
    color=(200, 60, 30),
    **save_kwargs,
) -> bytes:
    image = Image.new(mode, size, color)
    output = io.BytesIO()
    image.save(output, format=fmt, **save_kwargs)
    return output.getvalue()


def make_gradient_jpeg(width: int, height: int, exif: Optional[Image.Exif] = None) -> bytes:
    gradient = Image.linear_gradient("L").resize((width, height)).convert("RGB")
    output = io.BytesIO()
    if exif is not None:
        gradient.save(output, format="JPEG", quality=90, exif=exif)
    else:
        gradient.save(output, format="JPEG", quality=90)
    return output.getvalue()


def open_image(data: bytes) -> Image.Image:
    image = Image.open(io.BytesIO(data))
    image.load()
    return image


def encode_heic(image: Image.Image, **save_kwargs) -> bytes:
    """Encodes with pillow-heif; skips the test when libheif cannot encode."""
    import pillow_heif

    output = io.BytesIO()
    try:
        pillow_heif.from_pillow(image).save(output, quality=90, **save_kwargs)
    except Exception as exc:
        pytest.skip(f"HEIC encoding unavailable: {exc}")
    return output.getvalue()


# sRGB primaries adapted to D50, as stored in ICC matrix/TRC profiles
D50_WHITE = (0.9642, 1.0, 0.8249)
SRGB_RED = (0.4361, 0.2225, 0.0139)
SRGB_GREEN = (0.3851, 0.7169, 0.0971)
SRGB_BLUE = (0.1431, 0.0606, 0.7141)


def make_rgb_icc_profile(red=SRGB_RED, green=SRGB_GREEN, blue=SRGB_BLUE, gamma=2.2) -> bytes:
    """
    Builds a minimal ICC v2 RGB display profile (matrix + one gamma curve).

    Passing the green colorant as `red` (and vice versa) gives a profile
    under which a stored "red" pixel really means green.
    """

    def xyz_tag(xyz) -> bytes:
        return b"XYZ " + bytes(4) + b"".join(struct.pack(">i", round(v * 65536)) for v in xyz)

    curve = b"curv" + bytes(4) + struct.pack(">IH", 1, round(gamma * 256)) + bytes(2)
    tags = [
        (b"wtpt", xyz_tag(D50_WHITE)),
        (b"rXYZ", xyz_tag(red)),
        (b"gXYZ", xyz_tag(green)),
        (b"bXYZ", xyz_tag(blue)),
        (b"rTRC", curve),
    ]

    offset = 128 + 4 + 12 * (len(tags) + 2)
    table, data = b"", b""
    for signature, payload in tags:
        table += signature + struct.pack(">II", offset + len(data), len(payload))
        data += payload
    # green and blue share the red curve
    curve_offset = offset + len(data) - len(curve)
    for signature in (b"gTRC", b"bTRC"):
        table += signature + struct.pack(">II", curve_offset, len(curve))

    size = offset + len(data)
    header = (
        struct.pack(">I", size)
        + bytes(4)
        + struct.pack(">I", 0x02100000)
        + b"mntr"
        + b"RGB "
        + b"XYZ "
        + bytes(12)
        + b"acsp"
        + bytes(28)
        + b"".join(struct.pack(">i", round(v * 65536)) for v in D50_WHITE)
        + bytes(48)
    )
    return header + struct.pack(">I", len(tags) + 2) + table + data


# ══════════════════════════════════════════════════════════════════════════
# Image fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def jpeg_bytes() -> bytes:
    return make_image_bytes("JPEG", quality=90)


@pytest.fixture
def png_alpha_bytes() -> bytes:
    """Half-transparent red square; transparency must survive optimization."""
    return make_image_bytes("PNG", mode="RGBA", color=(255, 0, 0, 128))


@pytest.fixture
def webp_bytes() -> bytes:
    return make_image_bytes("WEBP", quality=90)


@pytest.fixture
def gif_bytes() -> bytes:
    return make_image_bytes("GIF", mode="P", color=3)


@pytest.fixture
def bmp_bytes() -> bytes:
    return make_image_bytes("BMP")


@pytest.fixture
def rotated_jpeg_bytes() -> bytes:
    """
    A 200×100 landscape JPEG whose EXIF says "rotate 90° CW to display".

    Displayed correctly it is 100×200 (portrait).
    """
    exif = Image.Exif()
    exif[ORIENTATION_TAG] = 6
    return make_gradient_jpeg(200, 100, exif=exif)


@pytest.fixture
def large_jpeg_bytes() -> bytes:
    """A 4000×3000 photo-sized JPEG (well under 10 MiB)."""
    return make_gradient_jpeg(4000, 3000)


@pytest.fixture
def heic_bytes() -> bytes:
    """
    A small HEIC image encoded with pillow-heif.

    Skips the test when the installed libheif has no HEVC encoder.
    """
    return encode_heic(Image.new("RGB", (120, 80), (20, 120, 220)))


# ══════════════════════════════════════════════════════════════════════════
# Object store fake
# ══════════════════════════════════════════════════════════════════════════

def client_error(code: str, status: int, operation: str) -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": code},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


class FakeS3Client:
    """
    In-memory stand-in for a boto3 S3 client.

    Attributes:
        objects:  key → (body bytes, content type)
        outage:   when True every call fails like an unreachable endpoint
        fail_deletes: when True delete_object answers 500 (objects stay)
        calls:    operation names in call order
    """

    def __init__(self, bucket: str = "walklog-test"):
        self.bucket = bucket
        self.objects: Dict[str, tuple] = {}
        self.outage = False
        self.fail_deletes = False
        self.calls = []
        self.closed = False

    def _check(self, operation: str, bucket: str) -> None:
        self.calls.append(operation)
        if self.outage:
            raise EndpointConnectionError(endpoint_url="http://garage.test:3900")
        if bucket != self.bucket:
            raise client_error("NoSuchBucket", 404, operation)

    def put_object(self, Bucket, Key, Body, ContentType):
        self._check("PutObject", Bucket)
        self.objects[Key] = (bytes(Body), ContentType)
        return {"ETag": '"fake"'}

    def head_object(self, Bucket, Key):
        self._check("HeadObject", Bucket)
        if Key not in self.objects:
            raise client_error("404", 404, "HeadObject")
        body, content_type = self.objects[Key]
        return {"ContentLength": len(body), "ContentType": content_type}

    def delete_object(self, Bucket, Key):
        self._check("DeleteObject", Bucket)
        if self.fail_deletes:
            raise client_error("InternalError", 500, "DeleteObject")
        self.objects.pop(Key, None)
        return {}

    def get_object(self, Bucket, Key):
        self._check("GetObject", Bucket)
        if Key not in self.objects:
            raise client_error("NoSuchKey", 404, "GetObject")
        body, content_type = self.objects[Key]
        return {
            "Body": StreamingBody(io.BytesIO(body), len(body)),
            "ContentType": content_type,
            "ContentLength": len(body),
        }

    def head_bucket(self, Bucket):
        self._check("HeadBucket", Bucket)
        return {}

    def close(self):
        self.closed = True


@pytest.fixture
def fake_s3() -> FakeS3Client:
    return FakeS3Client()


@pytest.fixture
def blob_store(fake_s3) -> BlobStoreGateway:
    return BlobStoreGateway(
        client=fake_s3,
        bucket="walklog-test",
        namespace="walks",
        metrics=StorageMetrics(),
    )


# ══════════════════════════════════════════════════════════════════════════
# HTTP client
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def test_client(blob_store, monkeypatch):
    """
    HTTPX AsyncClient bound to the app, with the gateway singleton set to
    the in-memory store.

    Usage:
        async def test_health(test_client):
            response = await test_client.get("/health")
            assert response.status_code == 200
    """
    from walklog import dependencies
    from walklog.main import app

    monkeypatch.setattr(dependencies, "_blob_store", blob_store)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
