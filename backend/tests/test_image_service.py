"""
WalkLog Backend — Image Service Tests
=======================================

What:  End-to-end pipeline tests below HTTP: validate → optimize → store,
       plus the replace and delete flows.
How:   Real optimizer, in-memory object store.
"""

import pytest

from walklog.exceptions import (
    ImageTooLargeError,
    NotAnImageError,
    UploadFailedError,
)
from walklog.services.image_optimizer import ImageOptimizer
from walklog.services.image_service import ImageService

from conftest import open_image


@pytest.fixture
def service(blob_store) -> ImageService:
    return ImageService(
        blob_store=blob_store,
        optimizer=ImageOptimizer(max_dimension=2000),
        max_upload_size_mb=10,
    )


class TestProcessUpload:

    @pytest.mark.asyncio
    async def test_large_photo(self, service, fake_s3, large_jpeg_bytes):
        """A 4000×3000 JPEG is stored as a 2000×1500 JPEG under walks/."""
        result = await service.process_upload(large_jpeg_bytes, "image/jpeg", "IMG_1234.jpg")

        assert result.image_key.startswith("walks/")
        assert result.image_key.endswith(".jpg")
        assert (result.width, result.height) == (2000, 1500)
        assert result.content_type == "image/jpeg"
        assert result.original_size == len(large_jpeg_bytes)
        assert result.url == f"/api/images/{result.image_key}"

        stored, content_type = fake_s3.objects[result.image_key]
        assert content_type == "image/jpeg"
        assert len(stored) == result.size
        assert open_image(stored).size == (2000, 1500)

    @pytest.mark.asyncio
    async def test_heic_stored_as_jpeg(self, service, fake_s3, heic_bytes):
        result = await service.process_upload(heic_bytes, "image/heic", "IMG_0001.HEIC")

        assert result.content_type == "image/jpeg"
        assert result.image_key.endswith(".jpg")
        stored, _ = fake_s3.objects[result.image_key]
        assert open_image(stored).format == "JPEG"

    @pytest.mark.asyncio
    async def test_png_keeps_png_key(self, service, png_alpha_bytes):
        result = await service.process_upload(png_alpha_bytes, "image/png", "logo.png")
        assert result.image_key.endswith(".png")
        assert result.content_type == "image/png"

    @pytest.mark.asyncio
    async def test_too_large_never_reaches_store(self, blob_store, fake_s3, jpeg_bytes):
        service = ImageService(blob_store=blob_store, max_upload_size_mb=0.001)

        with pytest.raises(ImageTooLargeError):
            await service.process_upload(jpeg_bytes + b"\x00" * 2048, "image/jpeg")

        assert fake_s3.calls == []

    @pytest.mark.asyncio
    async def test_not_an_image(self, service, fake_s3):
        with pytest.raises(NotAnImageError):
            await service.process_upload(b"%PDF-1.4 not an image", "application/pdf", "doc.pdf")
        assert fake_s3.objects == {}

    @pytest.mark.asyncio
    async def test_store_outage(self, service, fake_s3, jpeg_bytes):
        fake_s3.outage = True
        with pytest.raises(UploadFailedError):
            await service.process_upload(jpeg_bytes, "image/jpeg")


class TestReplaceImage:

    @pytest.mark.asyncio
    async def test_old_image_deleted_after_persist(self, service, fake_s3, jpeg_bytes, png_alpha_bytes):
        old = await service.process_upload(jpeg_bytes, "image/jpeg")
        persisted = []

        async def persist(key):
            # The old image must still exist while the record is being updated
            assert old.image_key in fake_s3.objects
            persisted.append(key)

        new = await service.replace_image(old.image_key, png_alpha_bytes, "image/png", "new.png", persist)

        assert persisted == [new.image_key]
        assert new.image_key in fake_s3.objects
        assert old.image_key not in fake_s3.objects

    @pytest.mark.asyncio
    async def test_persist_failure_rolls_back_new_upload(self, service, fake_s3, jpeg_bytes):
        old = await service.process_upload(jpeg_bytes, "image/jpeg")

        async def persist(key):
            raise RuntimeError("database unavailable")

        with pytest.raises(RuntimeError, match="database unavailable"):
            await service.replace_image(old.image_key, jpeg_bytes, "image/jpeg", None, persist)

        assert list(fake_s3.objects) == [old.image_key]

    @pytest.mark.asyncio
    async def test_no_previous_image(self, service, fake_s3, jpeg_bytes):
        async def persist(key):
            pass

        new = await service.replace_image(None, jpeg_bytes, "image/jpeg", None, persist)
        assert list(fake_s3.objects) == [new.image_key]
        assert "DeleteObject" not in fake_s3.calls

    @pytest.mark.asyncio
    async def test_failed_old_delete_is_not_fatal(self, service, fake_s3, jpeg_bytes):
        old = await service.process_upload(jpeg_bytes, "image/jpeg")
        fake_s3.fail_deletes = True

        async def persist(key):
            pass

        new = await service.replace_image(old.image_key, jpeg_bytes, "image/jpeg", None, persist)

        assert new.image_key in fake_s3.objects
        assert service.blob_store.metrics.delete_failures == 1


class TestDeleteImage:

    @pytest.mark.asyncio
    async def test_delete(self, service, jpeg_bytes):
        result = await service.process_upload(jpeg_bytes, "image/jpeg")
        assert await service.delete_image(result.image_key) is True
        assert await service.delete_image(result.image_key) is False
