import base64

import pytest

from musiclib.exceptions import InvalidSession, UploadCorrupted
from musiclib.utils.chunks import UploadRole, UploadSession, clean_chunk


def _split(data: bytes, parts: int) -> list[str]:
    encoded = base64.b64encode(data).decode()
    size = -(-len(encoded) // parts)
    return [encoded[i * size:(i + 1) * size] for i in range(parts)]


def _session(total: int = 5) -> UploadSession:
    return UploadSession(
        upload_id="up-1",
        user_id=1,
        total_chunks=total,
        filename="cover.png",
        mime_type="image/png",
        role=UploadRole.ALBUM,
        created_at=0.0,
    )


class TestUploadRole:
    def test_folders(self):
        assert UploadRole.AVATAR.folder == "profiles"
        assert UploadRole.ARTIST.folder == "artist_images"
        assert UploadRole.ALBUM.folder == "album_art"
        assert UploadRole.SONG.folder == "song_art"

    def test_parses_from_wire_value(self):
        assert UploadRole("song") is UploadRole.SONG


class TestCleanChunk:
    def test_strips_data_url_prefix(self):
        assert clean_chunk("data:image/png;base64,QUJD") == "QUJD"

    def test_strips_whitespace_and_noise(self):
        assert clean_chunk(" QU\nJD\r\n") == "QUJD"

    def test_leaves_plain_base64_alone(self):
        assert clean_chunk("QUJD+/==") == "QUJD+/=="


class TestUploadSession:
    def test_rejects_zero_chunks(self):
        with pytest.raises(InvalidSession):
            _session(total=0)

    def test_assembles_regardless_of_arrival_order(self):
        data = bytes(range(256)) * 7
        chunks = _split(data, 5)
        session = _session()

        for index in [4, 0, 3, 1, 2]:
            session.add_chunk(index, chunks[index])

        assert session.is_complete
        assert session.assemble() == data

    def test_any_order_matches_sequential_order(self):
        data = b"order independent payload " * 40
        chunks = _split(data, 5)
        sequential, shuffled = _session(), _session()
        for index in [0, 1, 2, 3, 4]:
            sequential.add_chunk(index, chunks[index])
        for index in [4, 0, 3, 1, 2]:
            shuffled.add_chunk(index, chunks[index])

        assert shuffled.assemble() == sequential.assemble()

    def test_chunk_boundaries_inside_base64_groups(self):
        data = b"hello chunked world!"
        encoded = base64.b64encode(data).decode()
        session = _session(total=3)
        session.add_chunk(0, encoded[:5])
        session.add_chunk(1, encoded[5:11])
        session.add_chunk(2, encoded[11:])
        assert session.assemble() == data

    def test_replayed_chunk_is_ignored(self):
        chunks = _split(b"abcdefghij", 2)
        session = _session(total=2)

        assert session.add_chunk(0, chunks[0]) is True
        assert session.add_chunk(0, "garbage!!") is False
        assert session.received_count == 1

        session.add_chunk(1, chunks[1])
        assert session.assemble() == b"abcdefghij"

    def test_first_chunk_may_carry_data_url_prefix(self):
        chunks = _split(b"\x89PNG fake image bytes", 2)
        session = _session(total=2)
        session.add_chunk(0, "data:image/png;base64," + chunks[0])
        session.add_chunk(1, chunks[1])
        assert session.assemble() == b"\x89PNG fake image bytes"

    def test_out_of_range_index(self):
        session = _session(total=2)
        with pytest.raises(InvalidSession):
            session.add_chunk(2, "QUJD")
        with pytest.raises(InvalidSession):
            session.add_chunk(-1, "QUJD")

    def test_missing_chunk_is_corrupted(self):
        chunks = _split(b"0123456789", 3)
        session = _session(total=3)
        session.add_chunk(0, chunks[0])
        session.add_chunk(2, chunks[2])

        assert session.missing_indices() == [1]
        with pytest.raises(UploadCorrupted):
            session.assemble()

    def test_invalid_base64_is_corrupted(self):
        session = _session(total=1)
        session.add_chunk(0, "QUJ")
        with pytest.raises(UploadCorrupted):
            session.assemble()

    def test_empty_payload_is_corrupted(self):
        session = _session(total=1)
        session.add_chunk(0, "")
        with pytest.raises(UploadCorrupted):
            session.assemble()

    def test_progress_and_release(self):
        session = _session(total=4)
        session.add_chunk(0, "QUJD")
        assert session.progress == 25.0
        session.release()
        assert session.received_count == 0
