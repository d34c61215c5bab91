"""
HTTP access for playlists, keys and segments.
"""

import logging
from pathlib import Path

import requests
import zstandard as zstd

from hlsgrab.errors import OutputError, TransportError
from hlsgrab.url_utils import get_origin

log = logging.getLogger(__name__)

ZSTD_MAGIC = b'\x28\xb5\x2f\xfd'
CHUNK_SIZE = 8192


def get_browser_headers(referer: str = None) -> dict:
    """
    Get browser-like headers for playlist and segment requests.
    Origin and referer follow the page the stream was found on.
    """
    headers = {
        'accept': '*/*',
        'accept-encoding': 'gzip, deflate, br, zstd',
        'accept-language': 'en-US,en;q=0.9',
        'cache-control': 'no-cache',
        'dnt': '1',
        'pragma': 'no-cache',
        'sec-ch-ua': '"Not?A_Brand";v="99", "Chromium";v="130"',
        'sec-ch-ua-mobile': '?0',
        'sec-ch-ua-platform': '"Windows"',
        'sec-fetch-dest': 'empty',
        'sec-fetch-mode': 'cors',
        'sec-fetch-site': 'cross-site',
        'user-agent': 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36'
    }
    if referer:
        headers['origin'] = get_origin(referer)
        headers['referer'] = get_origin(referer) + '/'
    return headers


def decompress_zstd(raw_bytes: bytes, url: str = None) -> bytes:
    """
    Decompress zstd-compressed content.
    Check for zstd magic bytes: 0x28 0xB5 0x2F 0xFD
    """
    if len(raw_bytes) < 4 or raw_bytes[:4] != ZSTD_MAGIC:
        return raw_bytes

    dctx = zstd.ZstdDecompressor()
    decompressed = bytearray()
    try:
        # Frames without a content size in the header need the streaming reader
        with dctx.stream_reader(raw_bytes) as reader:
            while True:
                chunk = reader.read(CHUNK_SIZE)
                if not chunk:
                    break
                decompressed.extend(chunk)
        return bytes(decompressed)
    except zstd.ZstdError as e:
        raise TransportError(url, reason=f"invalid zstd body: {e}") from e


class HttpTransport:
    """
    Thin wrapper around a requests session.
    Every failure surfaces as TransportError naming the URL.
    """

    def __init__(self, headers: dict = None, timeout: float = 30, session: requests.Session = None):
        self.session = session or requests.Session()
        self.session.headers.update(headers or get_browser_headers())
        self.timeout = timeout

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def close(self):
        self.session.close()

    def _get(self, url: str, stream: bool = False) -> requests.Response:
        try:
            response = self.session.get(url, timeout=self.timeout, stream=stream)
        except requests.RequestException as e:
            raise TransportError(url, reason=str(e)) from e
        if not response.ok:
            response.close()
            raise TransportError(url, response.status_code, response.reason)
        return response

    def fetch_bytes(self, url: str) -> bytes:
        """
        Return the full response body.
        """
        log.debug("GET %s", url)
        response = self._get(url)
        return response.content

    def fetch_text(self, url: str) -> str:
        """
        Fetch a playlist body and decode it as UTF-8.
        """
        raw_bytes = decompress_zstd(self.fetch_bytes(url), url)
        try:
            return raw_bytes.decode('utf-8')
        except UnicodeDecodeError as e:
            raise TransportError(url, reason=f"body is not UTF-8: {e}") from e

    def fetch_to_file(self, url: str, path) -> int:
        """
        Stream the response body of url into path.
        Return the number of bytes written.
        """
        log.debug("GET %s -> %s", url, path)
        response = self._get(url, stream=True)
        written = 0
        try:
            with open(path, 'wb') as f:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        f.write(chunk)
                        written += len(chunk)
        except requests.RequestException as e:
            raise TransportError(url, reason=str(e)) from e
        except OSError as e:
            raise OutputError(f"Failed to write {Path(path)} for {url}: {e}") from e
        finally:
            response.close()
        return written
