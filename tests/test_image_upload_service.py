"""Tests for chunked image uploads: session handling, finalization, attachment."""

import base64
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from conftest import PNG_BYTES
from musiclib.exceptions import InvalidSession, StorageFailure, UploadCorrupted
from musiclib.models import Artist, User
from musiclib.services.image_upload_service import ImageUploadService
from musiclib.utils.chunks import UploadRole
from musiclib.utils.files import content_hash


def _chunks(data: bytes, parts: int) -> list[str]:
    encoded = base64.b64encode(data).decode()
    size = -(-len(encoded) // parts)
    return [encoded[i * size:(i + 1) * size] for i in range(parts)]


class TestImageUploadService:
    @pytest.fixture
    def service(self, registry, storage, url_cache, session_factory):
        return ImageUploadService(registry, storage, url_cache, session_factory)

    async def _send(self, service, upload_id, order, chunks, user_id, **kwargs):
        result = None
        for index in order:
            result = await service.submit_chunk(
                upload_id=upload_id,
                chunk_index=index,
                total_chunks=len(chunks),
                payload=chunks[index],
                filename="cover.png",
                mime_type="image/png",
                user_id=user_id,
                **kwargs,
            )
        return result

    @pytest.mark.asyncio
    async def test_completes_and_stores_content_addressed(self, service, storage, registry, users):
        alice = users["alice"]
        chunks = _chunks(PNG_BYTES, 3)

        assert await service.submit_chunk("u1", 0, 3, chunks[0], "cover.png", "image/png", alice.id) is None
        assert service.progress("u1") == pytest.approx(33.3)
        assert await service.submit_chunk("u1", 2, 3, chunks[2], "cover.png", "image/png", alice.id) is None
        completed = await service.submit_chunk("u1", 1, 3, chunks[1], "cover.png", "image/png", alice.id)

        assert completed is not None
        assert completed.key == f"album_art/{content_hash(PNG_BYTES)}.png"
        assert completed.size == len(PNG_BYTES)
        assert completed.url.startswith(f"/files/{completed.key}?token=")
        assert storage.path_for(completed.key).read_bytes() == PNG_BYTES
        assert "u1" not in registry

    @pytest.mark.asyncio
    async def test_data_url_prefix_on_first_chunk(self, service, storage, users):
        chunks = _chunks(PNG_BYTES, 2)
        chunks[0] = "data:image/png;base64," + chunks[0]

        completed = await self._send(service, "u-data", [0, 1], chunks, users["alice"].id)

        assert storage.path_for(completed.key).read_bytes() == PNG_BYTES

    @pytest.mark.asyncio
    async def test_unknown_session_needs_first_chunk(self, service, users):
        with pytest.raises(InvalidSession):
            await service.submit_chunk("nope", 1, 3, "QUJD", "a.png", "image/png", users["alice"].id)

    @pytest.mark.asyncio
    async def test_out_of_range_index(self, service, users):
        with pytest.raises(InvalidSession):
            await service.submit_chunk("u2", 3, 3, "QUJD", "a.png", "image/png", users["alice"].id)

    @pytest.mark.asyncio
    async def test_other_user_cannot_touch_session(self, service, registry, users):
        chunks = _chunks(PNG_BYTES, 2)
        await service.submit_chunk("shared-id", 0, 2, chunks[0], "a.png", "image/png", users["alice"].id)

        with pytest.raises(InvalidSession):
            await service.submit_chunk("shared-id", 1, 2, chunks[1], "a.png", "image/png", users["bob"].id)
        with pytest.raises(InvalidSession):
            service.cancel("shared-id", users["bob"].id)

        session = registry.get("shared-id")
        assert session.user_id == users["alice"].id
        assert session.received_count == 1

    @pytest.mark.asyncio
    async def test_total_chunks_cannot_change(self, service, users):
        chunks = _chunks(PNG_BYTES, 2)
        await service.submit_chunk("u3", 0, 2, chunks[0], "a.png", "image/png", users["alice"].id)
        with pytest.raises(InvalidSession):
            await service.submit_chunk("u3", 1, 3, chunks[1], "a.png", "image/png", users["alice"].id)

    @pytest.mark.asyncio
    async def test_replayed_chunk_does_not_finalize_twice(self, service, storage, users):
        chunks = _chunks(PNG_BYTES, 2)
        alice = users["alice"].id
        await service.submit_chunk("u4", 0, 2, chunks[0], "a.png", "image/png", alice)
        assert await service.submit_chunk("u4", 0, 2, chunks[0], "a.png", "image/png", alice) is None
        assert await service.submit_chunk("u4", 1, 2, chunks[1], "a.png", "image/png", alice) is not None

        # Session is gone once finalized; a late duplicate is rejected
        with pytest.raises(InvalidSession):
            await service.submit_chunk("u4", 1, 2, chunks[1], "a.png", "image/png", alice)

    @pytest.mark.asyncio
    async def test_corrupted_upload_drops_session(self, service, registry, storage, users):
        with pytest.raises(UploadCorrupted):
            await service.submit_chunk("bad", 0, 1, "QUJ", "a.png", "image/png", users["alice"].id)

        assert "bad" not in registry
        assert list((storage.base / "album_art").glob("*")) == []

    @pytest.mark.asyncio
    async def test_storage_failure_drops_session(self, service, registry, storage, users, monkeypatch):
        monkeypatch.setattr(storage, "upload_file", AsyncMock(side_effect=StorageFailure("disk full")))
        chunks = _chunks(PNG_BYTES, 1)

        with pytest.raises(StorageFailure):
            await service.submit_chunk("sf", 0, 1, chunks[0], "a.png", "image/png", users["alice"].id)
        assert "sf" not in registry

    @pytest.mark.asyncio
    async def test_cancel_discards_without_storage_writes(self, service, registry, storage, users):
        await storage.initialize()
        chunks = _chunks(PNG_BYTES, 3)
        await service.submit_chunk("u5", 0, 3, chunks[0], "a.png", "image/png", users["alice"].id)

        assert service.cancel("u5", users["alice"].id) is True
        assert "u5" not in registry
        assert service.cancel("u5", users["alice"].id) is False
        assert await storage.list_keys() == []

    @pytest.mark.asyncio
    async def test_roles_store_same_bytes_in_distinct_folders(self, service, users):
        chunks = _chunks(PNG_BYTES, 1)
        alice = users["alice"].id

        album = await service.submit_chunk("r1", 0, 1, chunks[0], "a.png", "image/png", alice, role=UploadRole.ALBUM)
        song = await service.submit_chunk("r2", 0, 1, chunks[0], "a.png", "image/png", alice, role=UploadRole.SONG)

        assert album.key.startswith("album_art/")
        assert song.key.startswith("song_art/")
        assert album.sha256 == song.sha256
        assert album.key != song.key

    @pytest.mark.asyncio
    async def test_avatar_is_recorded_on_user(self, service, session_factory, users):
        chunks = _chunks(PNG_BYTES, 1)
        alice = users["alice"].id

        completed = await service.submit_chunk(
            "av", 0, 1, chunks[0], "me.png", "image/png", alice, role=UploadRole.AVATAR
        )

        assert completed.key.startswith("profiles/")
        async with session_factory() as db:
            user = await db.get(User, alice)
            assert user.avatar_url == completed.locator

    @pytest.mark.asyncio
    async def test_artist_image_only_for_own_artist(self, service, session_factory, users):
        alice, bob = users["alice"].id, users["bob"].id
        async with session_factory() as db:
            artist = Artist(name="Band", created_by=alice)
            db.add(artist)
            await db.commit()
            artist_id = artist.id

        chunks = _chunks(PNG_BYTES, 1)
        await service.submit_chunk(
            "art-bob", 0, 1, chunks[0], "a.png", "image/png", bob, role=UploadRole.ARTIST, target_id=artist_id
        )
        async with session_factory() as db:
            assert (await db.execute(select(Artist.image_url).where(Artist.id == artist_id))).scalar() is None

        completed = await service.submit_chunk(
            "art-alice", 0, 1, chunks[0], "a.png", "image/png", alice, role=UploadRole.ARTIST, target_id=artist_id
        )
        async with session_factory() as db:
            assert (await db.execute(select(Artist.image_url).where(Artist.id == artist_id))).scalar() == completed.locator

    @pytest.mark.asyncio
    async def test_single_shot_upload_sniffs_type(self, service, storage):
        completed = await service.upload_image(PNG_BYTES, "blob", "application/octet-stream", UploadRole.SONG)
        assert completed.key == f"song_art/{content_hash(PNG_BYTES)}.png"
        assert storage.path_for(completed.key).exists()
