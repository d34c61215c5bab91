"""
Parse and validate m3u8 playlists.

Parsing happens in two steps: iter_events() turns the text into a flat
sequence of typed events, and PlaylistBuilder folds those events into a
Playlist while tracking the pending variant, the active encryption
context and the running media sequence.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Iterator, NamedTuple, Optional, Union

from hlsgrab.errors import FormatError

log = logging.getLogger(__name__)

HEADER = '#EXTM3U'
STREAM_INF_TAG = '#EXT-X-STREAM-INF:'
MEDIA_SEQUENCE_TAG = '#EXT-X-MEDIA-SEQUENCE:'
KEY_TAG = '#EXT-X-KEY:'
TAG_PREFIX = '#EXT'

SUPPORTED_METHOD = 'AES-128'
IV_LENGTH = 32

_ATTRIBUTE_KEY = re.compile(r'\s*([^=,"\s]+)\s*=')
_UNQUOTED_VALUE = re.compile(r'[^,]*')
_HEX = re.compile(r'[0-9a-fA-F]*')
_UINT = re.compile(r'[0-9]+')


class Variant(NamedTuple):
    bandwidth: Optional[int]
    url: str


@dataclass(frozen=True)
class EncryptionContext:
    key_uri: str
    iv: Optional[str] = None
    method: str = SUPPORTED_METHOD

    def iv_for(self, sequence: int) -> str:
        """
        IV used for the segment with the given sequence number.
        """
        if self.iv is not None:
            return self.iv
        return sequence_iv(sequence)


@dataclass
class Playlist:
    variants: list = field(default_factory=list)
    segments: dict = field(default_factory=dict)
    encryption: Optional[EncryptionContext] = None
    is_master: bool = False
    url: Optional[str] = None


# Events produced by iter_events()

class StreamInfo(NamedTuple):
    attributes: dict


class KeyDeclared(NamedTuple):
    attributes: dict


class MediaSequence(NamedTuple):
    value: int


class UrlLine(NamedTuple):
    url: str


Event = Union[StreamInfo, KeyDeclared, MediaSequence, UrlLine]


def parse_attributes(text: str) -> dict:
    """
    Parse a comma separated KEY=VALUE list.
    Values may be double-quoted, commas inside quotes do not split.
    """
    attributes = {}
    pos = 0
    while pos < len(text):
        match = _ATTRIBUTE_KEY.match(text, pos)
        if not match:
            raise FormatError(f"Attribute without '=' in {text!r} at offset {pos}")
        key = match.group(1)
        pos = match.end()

        if text.startswith('"', pos):
            end = text.find('"', pos + 1)
            if end == -1:
                raise FormatError(f"Unterminated quoted value for {key} in {text!r}")
            value = text[pos + 1:end]
            pos = end + 1
            while pos < len(text) and text[pos].isspace():
                pos += 1
        else:
            match = _UNQUOTED_VALUE.match(text, pos)
            value = match.group(0).strip()
            pos = match.end()

        attributes[key] = value

        if pos < len(text):
            if text[pos] != ',':
                raise FormatError(f"Unexpected text {text[pos:]!r} after {key} in {text!r}")
            pos += 1

    return attributes


def normalize_iv(literal: str) -> str:
    """
    Turn a bare or 0x-prefixed hex literal into exactly 32 lowercase hex
    digits: shorter values are zero-padded on the left, longer ones are
    cut on the right.
    """
    digits = literal.strip()
    if digits[:2] in ('0x', '0X'):
        digits = digits[2:]
    if not digits or not _HEX.fullmatch(digits):
        raise FormatError(f"Invalid IV {literal!r}")
    return digits.lower().zfill(IV_LENGTH)[:IV_LENGTH]


def sequence_iv(sequence: int) -> str:
    """
    Default IV for a segment: its sequence number as 32 hex digits.
    """
    return format(sequence, f'0{IV_LENGTH}x')


def _parse_media_sequence(value: str) -> int:
    value = value.strip()
    if not _UINT.fullmatch(value):
        raise FormatError(f"Invalid media sequence {value!r}")
    return int(value)


def iter_events(text: str) -> Iterator[Event]:
    """
    Yield the recognized tags and URL lines of a playlist in order.
    Unknown #EXT tags and blank lines are skipped.
    """
    lines = text.splitlines()
    if not lines or lines[0] != HEADER:
        first = lines[0][:80] if lines else ''
        raise FormatError(f"Missing {HEADER} header, got {first!r}")

    for line in lines[1:]:
        line = line.strip()
        if not line:
            continue
        if line.startswith(STREAM_INF_TAG):
            yield StreamInfo(parse_attributes(line[len(STREAM_INF_TAG):]))
        elif line.startswith(MEDIA_SEQUENCE_TAG):
            yield MediaSequence(_parse_media_sequence(line[len(MEDIA_SEQUENCE_TAG):]))
        elif line.startswith(KEY_TAG):
            yield KeyDeclared(parse_attributes(line[len(KEY_TAG):]))
        elif line.startswith(TAG_PREFIX):
            log.debug("Ignoring tag %s", line.split(':', 1)[0])
        else:
            yield UrlLine(line)


class PlaylistBuilder:
    """
    State machine folding playlist events into a Playlist.
    """

    def __init__(self):
        self.playlist = Playlist()
        self.pending_variant = None
        self.encryption = None
        self.sequence = 0

    def feed(self, event: Event):
        if isinstance(event, StreamInfo):
            self._open_variant(event.attributes)
        elif isinstance(event, MediaSequence):
            self.sequence = event.value
        elif isinstance(event, KeyDeclared):
            self.encryption = self._encryption_context(event.attributes)
        elif isinstance(event, UrlLine):
            self._url_line(event.url)

    def _open_variant(self, attributes: dict):
        if 'BANDWIDTH' not in attributes:
            raise FormatError(f"#EXT-X-STREAM-INF without BANDWIDTH: {attributes}")
        bandwidth = attributes['BANDWIDTH'].strip()
        self.playlist.is_master = True
        self.pending_variant = Variant(int(bandwidth) if _UINT.fullmatch(bandwidth) else None, None)

    def _url_line(self, url: str):
        if self.pending_variant is not None:
            self.playlist.variants.append(self.pending_variant._replace(url=url))
            self.pending_variant = None
        elif self.playlist.is_master:
            raise FormatError(f"URL line {url!r} without a preceding #EXT-X-STREAM-INF")
        else:
            self.playlist.segments[self.sequence] = url
            self.sequence += 1

    @staticmethod
    def _encryption_context(attributes: dict) -> EncryptionContext:
        method = attributes.get('METHOD')
        if method != SUPPORTED_METHOD:
            raise FormatError(f"Unsupported encryption method {method!r}")
        key_uri = attributes.get('URI')
        if not key_uri:
            raise FormatError("#EXT-X-KEY declared without a URI")
        iv = attributes.get('IV')
        return EncryptionContext(key_uri, normalize_iv(iv) if iv is not None else None)

    def finish(self) -> Playlist:
        if self.pending_variant is not None:
            raise FormatError("#EXT-X-STREAM-INF at end of playlist without a URL line")
        self.playlist.encryption = self.encryption
        return self.playlist


def parse(text: str) -> Playlist:
    builder = PlaylistBuilder()
    for event in iter_events(text):
        builder.feed(event)
    return builder.finish()


def fetch_playlist(url: str, transport) -> Playlist:
    """
    Fetch a playlist through the transport and parse it.
    """
    text = transport.fetch_text(url)
    try:
        playlist = parse(text)
    except FormatError as e:
        raise FormatError(f"{url}: {e}") from e
    playlist.url = url
    return playlist


def get_playlist_type(playlist: Playlist) -> str:
    """
    Return 'master' or 'media'.
    """
    if playlist.is_master:
        return 'master'
    return 'media'


def validate_playlist(playlist: Playlist) -> bool:
    """
    A usable playlist lists at least one variant or segment.
    """
    if playlist is None:
        return False
    return bool(playlist.variants or playlist.segments)
