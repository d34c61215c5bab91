import io
from pathlib import Path

import pytest
from Crypto.Cipher import AES
from Crypto.Util.Padding import pad

from hlsgrab.config import DownloadConfig
from hlsgrab.crypto import decrypt_file
from hlsgrab.errors import CryptoError, FormatError, OutputError, ResolutionError, TransportError
from hlsgrab.playlist_parser import EncryptionContext, sequence_iv
from hlsgrab.segment_downloader import SegmentPipeline, download_video, resolve_media_playlist


BASE = "https://example.com/stream/"
KEY = bytes.fromhex("000102030405060708090a0b0c0d0e0f")
SEGMENTS = [b"first segment " * 100, b"second segment " * 50, b"third"]

MEDIA = """#EXTM3U
#EXT-X-TARGETDURATION:10
#EXTINF:10.0,
seg0.ts
#EXTINF:10.0,
seg1.ts
#EXTINF:10.0,
https://other.example.com/seg2.ts
#EXT-X-ENDLIST
"""

MASTER = """#EXTM3U
#EXT-X-STREAM-INF:BANDWIDTH=100
low/index.m3u8
#EXT-X-STREAM-INF:BANDWIDTH=900
high/index.m3u8
"""


def encrypt(data: bytes, iv_hex: str) -> bytes:
    return AES.new(KEY, AES.MODE_CBC, bytes.fromhex(iv_hex)).encrypt(pad(data, AES.block_size))


def mock_media(requests_mock, playlist=MEDIA, bodies=SEGMENTS):
    requests_mock.get(BASE + "index.m3u8", text=playlist)
    requests_mock.get(BASE + "seg0.ts", content=bodies[0])
    requests_mock.get(BASE + "seg1.ts", content=bodies[1])
    requests_mock.get("https://other.example.com/seg2.ts", content=bodies[2])


class TestSegmentPipeline:
    def test_appends_in_sequence_order(self, tmp_path):
        fetched = []

        def fetch(url, path):
            fetched.append(url)
            path.write_bytes(url.encode())

        sink = io.BytesIO()
        pipeline = SegmentPipeline(fetch, scratch_dir=tmp_path)
        written = pipeline.run({3: "c", 1: "a", 2: "b"}, None, None, sink)

        assert fetched == ["a", "b", "c"]
        assert sink.getvalue() == b"abc"
        assert written == 3
        assert list(tmp_path.iterdir()) == []

    def test_decrypts_with_sequence_iv(self, tmp_path):
        bodies = {7: encrypt(b"seven", sequence_iv(7)), 8: encrypt(b"eight", sequence_iv(8))}

        def fetch(url, path):
            path.write_bytes(bodies[int(url)])

        sink = io.BytesIO()
        pipeline = SegmentPipeline(fetch, decrypt_file, scratch_dir=tmp_path)
        pipeline.run({7: "7", 8: "8"}, EncryptionContext("key.bin"), KEY.hex(), sink)

        assert sink.getvalue() == b"seveneight"

    def test_decrypts_with_explicit_iv(self, tmp_path):
        iv = "0000000000000000000000000000001a"

        def fetch(url, path):
            path.write_bytes(encrypt(b"payload", iv))

        sink = io.BytesIO()
        SegmentPipeline(fetch, scratch_dir=tmp_path).run({0: "0"}, EncryptionContext("key.bin", iv), KEY.hex(), sink)
        assert sink.getvalue() == b"payload"

    def test_decrypt_failure_aborts_and_cleans_up(self, tmp_path):
        fetched = []

        def fetch(url, path):
            fetched.append(url)
            # Not a multiple of the AES block size
            path.write_bytes(b"x" * 17)

        sink = io.BytesIO()
        pipeline = SegmentPipeline(fetch, scratch_dir=tmp_path)
        with pytest.raises(CryptoError):
            pipeline.run({0: "a", 1: "b"}, EncryptionContext("key.bin"), KEY.hex(), sink)

        assert fetched == ["a"]
        assert sink.getvalue() == b""
        assert list(tmp_path.iterdir()) == []

    def test_missing_key_fails_before_fetching(self, tmp_path):
        def fetch(url, path):
            pytest.fail("segment fetched without a key")

        with pytest.raises(CryptoError, match="key.bin"):
            SegmentPipeline(fetch, scratch_dir=tmp_path).run({0: "a"}, EncryptionContext("key.bin"), None, io.BytesIO())

    def test_output_failure_aborts_and_cleans_up(self, tmp_path):
        fetched = []
        scratch_files = []

        def fetch(url, path):
            fetched.append(url)
            scratch_files.append(path)
            path.write_bytes(b"data")

        class FullDisk(io.BytesIO):
            def write(self, data):
                raise OSError(28, "No space left on device")

        pipeline = SegmentPipeline(fetch, scratch_dir=tmp_path)
        with pytest.raises(OutputError, match="https://example.com/a.ts"):
            pipeline.run({0: "https://example.com/a.ts", 1: "https://example.com/b.ts"}, None, None, FullDisk())

        assert fetched == ["https://example.com/a.ts"]
        assert not scratch_files[0].exists()
        assert list(tmp_path.iterdir()) == []
        assert pipeline.bytes_written == 0

    def test_cleanup_failure_keeps_original_error(self, tmp_path, monkeypatch, caplog):
        def fetch(url, path):
            path.write_bytes(b"partial")
            raise TransportError(url, 500)

        def unlink(self, missing_ok=False):
            raise PermissionError(13, "Permission denied")

        monkeypatch.setattr(Path, "unlink", unlink)
        pipeline = SegmentPipeline(fetch, scratch_dir=tmp_path)
        with pytest.raises(TransportError) as excinfo:
            pipeline.run({0: "https://example.com/a.ts"}, None, None, io.BytesIO())

        assert excinfo.value.status == 500
        assert "Could not remove scratch file" in caplog.text

    def test_progress(self, tmp_path):
        calls = []

        def fetch(url, path):
            path.write_bytes(b"-")

        SegmentPipeline(fetch, scratch_dir=tmp_path, progress=lambda *args: calls.append(args)).run(
            {0: "a", 1: "b"}, None, None, io.BytesIO()
        )
        assert calls == [(1, 2), (2, 2)]


class TestDownloadVideo:
    def test_plain(self, requests_mock, transport, tmp_path):
        mock_media(requests_mock)
        output = tmp_path / "out" / "video.ts"

        result = download_video(BASE + "index.m3u8", str(output), DownloadConfig(scratch_dir=str(tmp_path)), transport)

        assert result.ok, result.error
        assert result.segments == 3
        assert output.read_bytes() == b"".join(SEGMENTS)
        assert result.bytes_written == len(b"".join(SEGMENTS))

    def test_mid_run_failure(self, requests_mock, transport, tmp_path):
        mock_media(requests_mock)
        requests_mock.get(BASE + "seg1.ts", status_code=404)
        output = tmp_path / "video.ts"

        result = download_video(BASE + "index.m3u8", str(output), DownloadConfig(scratch_dir=str(tmp_path)), transport)

        assert not result.ok
        assert isinstance(result.error, TransportError)
        assert result.error.status == 404
        assert result.error.url == BASE + "seg1.ts"
        assert output.read_bytes() == SEGMENTS[0]
        assert result.bytes_written == len(SEGMENTS[0])
        urls = [request.url for request in requests_mock.request_history]
        assert "https://other.example.com/seg2.ts" not in urls
        assert [p.name for p in tmp_path.iterdir()] == ["video.ts"]

    def test_encrypted_with_fetched_key(self, requests_mock, transport, tmp_path):
        playlist = MEDIA.replace(
            "#EXT-X-TARGETDURATION:10\n",
            '#EXT-X-TARGETDURATION:10\n#EXT-X-MEDIA-SEQUENCE:4\n#EXT-X-KEY:METHOD=AES-128,URI="key.bin"\n',
        )
        bodies = [encrypt(body, sequence_iv(4 + index)) for index, body in enumerate(SEGMENTS)]
        mock_media(requests_mock, playlist, bodies)
        requests_mock.get(BASE + "key.bin", content=KEY)
        output = tmp_path / "video.ts"

        result = download_video(BASE + "index.m3u8", str(output), DownloadConfig(), transport)

        assert result.ok, result.error
        assert output.read_bytes() == b"".join(SEGMENTS)

    def test_encrypted_with_cli_key(self, requests_mock, transport, tmp_path):
        playlist = MEDIA.replace("#EXT-X-TARGETDURATION:10\n", '#EXT-X-KEY:METHOD=AES-128,URI="key.bin",IV=0x01\n')
        bodies = [encrypt(body, sequence_iv(1)) for body in SEGMENTS]
        mock_media(requests_mock, playlist, bodies)
        key_mock = requests_mock.get(BASE + "key.bin", status_code=500)
        output = tmp_path / "video.ts"

        result = download_video(BASE + "index.m3u8", str(output), DownloadConfig(cli_key=KEY.hex()), transport)

        assert result.ok, result.error
        assert not key_mock.called
        assert output.read_bytes() == b"".join(SEGMENTS)

    def test_unresolved_key(self, requests_mock, transport, tmp_path):
        playlist = MEDIA.replace("#EXT-X-TARGETDURATION:10\n", '#EXT-X-KEY:METHOD=AES-128,URI="skd://abc"\n')
        mock_media(requests_mock, playlist)
        output = tmp_path / "video.ts"

        result = download_video(BASE + "index.m3u8", str(output), DownloadConfig(), transport)

        assert isinstance(result.error, CryptoError)
        assert output.read_bytes() == b""

    def test_master_playlist(self, requests_mock, transport, tmp_path):
        requests_mock.get(BASE + "master.m3u8", text=MASTER)
        requests_mock.get(BASE + "low/index.m3u8", text="#EXTM3U\na.ts\n")
        requests_mock.get(BASE + "low/a.ts", content=b"low quality")
        output = tmp_path / "video.ts"

        result = download_video(BASE + "master.m3u8", str(output), DownloadConfig(bandwidth="min"), transport)

        assert result.ok, result.error
        assert output.read_bytes() == b"low quality"

    def test_non_ascii_bandwidth_is_reported_in_result(self, requests_mock, transport, tmp_path):
        requests_mock.get(BASE + "master.m3u8", text="#EXTM3U\n#EXT-X-STREAM-INF:BANDWIDTH=²\nlow/index.m3u8\n")

        result = download_video(BASE + "master.m3u8", str(tmp_path / "video.ts"), DownloadConfig(), transport)

        assert isinstance(result.error, ResolutionError)
        assert BASE + "master.m3u8" in str(result.error)

    def test_non_ascii_media_sequence_is_reported_in_result(self, requests_mock, transport, tmp_path):
        requests_mock.get(BASE + "index.m3u8", text="#EXTM3U\n#EXT-X-MEDIA-SEQUENCE:²\na.ts\n")

        result = download_video(BASE + "index.m3u8", str(tmp_path / "video.ts"), DownloadConfig(), transport)

        assert isinstance(result.error, FormatError)

    def test_no_matching_variant(self, requests_mock, transport, tmp_path):
        requests_mock.get(BASE + "master.m3u8", text=MASTER)

        result = download_video(BASE + "master.m3u8", str(tmp_path / "video.ts"), DownloadConfig(bandwidth=5), transport)

        assert isinstance(result.error, ResolutionError)


def test_resolve_media_playlist(requests_mock, transport):
    requests_mock.get(BASE + "master.m3u8", text=MASTER)
    requests_mock.get(BASE + "high/index.m3u8", text="#EXTM3U\na.ts\n")

    playlist = resolve_media_playlist(BASE + "master.m3u8", "max", transport)

    assert playlist.url == BASE + "high/index.m3u8"
    assert playlist.segments == {0: "a.ts"}
