"""
Sequential segment downloading, decryption and concatenation.
"""

import logging
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from hlsgrab.config import DownloadConfig
from hlsgrab.crypto import decrypt_file
from hlsgrab.errors import CryptoError, FormatError, HLSError, OutputError, ResolutionError
from hlsgrab.key_resolver import resolve_key
from hlsgrab.playlist_parser import EncryptionContext, Playlist, fetch_playlist
from hlsgrab.quality_selector import Policy, select_variant
from hlsgrab.transport import HttpTransport
from hlsgrab.url_utils import absolutize, get_base_url

log = logging.getLogger(__name__)


def _remove_scratch(*paths: Path):
    """
    Delete scratch files. A file that cannot be removed is only logged,
    so it never replaces the error that ended the segment.
    """
    for path in paths:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            log.warning("Could not remove scratch file %s: %s", path, e)


def print_progress(current: int, total: int):
    if current % 10 == 0 or current == total:
        print(f"  Progress: {current}/{total} segments ({current * 100 // total}%)")


class SegmentPipeline:
    """
    Fetch, decrypt and append segments one at a time.

    fetch(url, path) stores a segment body in path.
    decrypt(src, hex_key, hex_iv, dst) writes the plaintext of src to dst.
    Scratch files of a segment are removed before the next one starts,
    whether it succeeded or not. The first failure ends the run.
    """

    def __init__(
            self,
            fetch: Callable,
            decrypt: Callable = decrypt_file,
            scratch_dir: str = None,
            progress: Callable[[int, int], None] = None):
        self.fetch = fetch
        self.decrypt = decrypt
        self.scratch_dir = scratch_dir
        self.progress = progress
        self.bytes_written = 0

    def run(self, segments: dict, encryption: Optional[EncryptionContext], key: Optional[str], sink) -> int:
        """
        Write every segment of the sequence -> URL map to sink in ascending
        sequence order. Return the number of bytes written.
        """
        if encryption is not None and key is None:
            raise CryptoError(f"Segments are encrypted but no key was resolved for {encryption.key_uri}")

        self.bytes_written = 0
        total = len(segments)
        try:
            scratch = tempfile.TemporaryDirectory(prefix='hlsgrab-', dir=self.scratch_dir)
        except OSError as e:
            raise OutputError(f"Failed to create scratch directory in {self.scratch_dir or tempfile.gettempdir()}: {e}") from e

        with scratch as scratch_path:
            for current, sequence in enumerate(sorted(segments), 1):
                self._process(sequence, segments[sequence], encryption, key, Path(scratch_path), sink)
                if self.progress:
                    self.progress(current, total)

        return self.bytes_written

    def _process(self, sequence: int, url: str, encryption, key, scratch: Path, sink):
        raw_path = scratch / f"{sequence}.raw"
        plain_path = scratch / f"{sequence}.plain"
        try:
            log.debug("Segment %d: %s", sequence, url)
            self.fetch(url, raw_path)
            if encryption is not None:
                self.decrypt(raw_path, key, encryption.iv_for(sequence), plain_path)
                self._append(plain_path, sink, url)
            else:
                self._append(raw_path, sink, url)
        finally:
            _remove_scratch(raw_path, plain_path)

    def _append(self, path: Path, sink, url: str):
        try:
            with open(path, 'rb') as f:
                shutil.copyfileobj(f, sink)
            self.bytes_written += path.stat().st_size
        except OSError as e:
            raise OutputError(f"Failed to append segment {url} to output: {e}") from e


@dataclass
class DownloadResult:
    output_path: str
    bytes_written: int = 0
    segments: int = 0
    error: Optional[HLSError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def resolve_media_playlist(playlist_url: str, policy: Policy, transport) -> Playlist:
    """
    Fetch playlist_url and, for a master playlist, the media playlist of
    the variant chosen by policy.
    """
    playlist = fetch_playlist(playlist_url, transport)
    if not playlist.is_master:
        return playlist

    try:
        variant = select_variant(playlist.variants, policy)
    except ResolutionError as e:
        raise ResolutionError(f"{playlist_url}: {e}") from e
    media_url = absolutize(variant.url, get_base_url(playlist_url))
    log.info("Selected stream with bandwidth %s: %s", variant.bandwidth, media_url)

    playlist = fetch_playlist(media_url, transport)
    if playlist.is_master:
        raise FormatError(f"{media_url}: expected a media playlist, got another master playlist")
    return playlist


def download_video(
        playlist_url: str,
        output_path: str,
        config: DownloadConfig = None,
        transport=None,
        progress: Callable[[int, int], None] = None,
        playlist: Playlist = None) -> DownloadResult:
    """
    Main function: resolve the media playlist, its key and write every
    segment to output_path. An already resolved media playlist skips the
    playlist requests.
    Failures are returned in DownloadResult.error, bytes already written
    stay in the output file.
    """
    config = config or DownloadConfig()
    result = DownloadResult(output_path)
    own_transport = transport is None
    if own_transport:
        transport = HttpTransport(config.headers, config.timeout)

    try:
        if playlist is None:
            playlist = resolve_media_playlist(playlist_url, config.bandwidth, transport)
        if not playlist.segments:
            raise FormatError(f"{playlist.url or playlist_url}: playlist has no segments")

        base_url = get_base_url(playlist.url or playlist_url)
        key = None
        if playlist.encryption is not None:
            key = resolve_key(playlist.encryption.key_uri, base_url, config.cli_key, config.key_cache, transport)

        segments = {sequence: absolutize(uri, base_url) for sequence, uri in playlist.segments.items()}
        result.segments = len(segments)

        output_file = Path(output_path)
        pipeline = SegmentPipeline(transport.fetch_to_file, decrypt_file, config.scratch_dir, progress)
        try:
            output_file.parent.mkdir(parents=True, exist_ok=True)
            sink = open(output_file, 'wb')
        except OSError as e:
            raise OutputError(f"Failed to open output {output_file}: {e}") from e

        try:
            with sink:
                pipeline.run(segments, playlist.encryption, key, sink)
        finally:
            result.bytes_written = pipeline.bytes_written
    except HLSError as e:
        log.debug("Download of %s aborted: %s", playlist_url, e)
        result.error = e
    finally:
        if own_transport:
            transport.close()

    return result
