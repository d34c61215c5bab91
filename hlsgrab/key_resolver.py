"""
Resolve the AES-128 key of a media playlist.

Precedence: key given on the command line, key cache by exact URI, key
cache by absolute URI, HTTP(S) download. Keys are handled as hex strings.
"""

import logging
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional
from urllib.parse import urlparse

from hlsgrab.errors import FormatError, OutputError
from hlsgrab.url_utils import absolutize

log = logging.getLogger(__name__)

FETCHABLE_SCHEMES = ('http', 'https')


def load_key_cache(path) -> Mapping[str, str]:
    """
    Read a key cache file: one '<URI> <hex key>' entry per line.
    Later entries for the same URI replace earlier ones.
    """
    path = Path(path)
    cache = {}
    try:
        text = path.read_text(encoding='utf-8')
    except OSError as e:
        raise OutputError(f"Failed to read key cache {path}: {e}") from e

    for lineno, line in enumerate(text.splitlines(), 1):
        if not line.strip():
            continue
        parts = line.split()
        if len(parts) != 2:
            raise FormatError(f"{path}:{lineno}: expected '<URI> <hex key>', got {line!r}")
        uri, key = parts
        cache[uri] = key

    log.debug("Loaded %d key(s) from %s", len(cache), path)
    return MappingProxyType(cache)


def resolve_key(
        key_uri: str,
        base_url: str,
        cli_key: Optional[str],
        cache: Mapping[str, str],
        transport) -> Optional[str]:
    """
    Return the hex key for key_uri, or None when it cannot be resolved.
    """
    if cli_key is not None:
        log.debug("Using key from the command line")
        return cli_key

    if key_uri in cache:
        log.debug("Key cache hit for %s", key_uri)
        return cache[key_uri]

    absolute_uri = absolutize(key_uri, base_url)
    if absolute_uri in cache:
        log.debug("Key cache hit for %s", absolute_uri)
        return cache[absolute_uri]

    if urlparse(absolute_uri).scheme.lower() in FETCHABLE_SCHEMES:
        log.info("Fetching encryption key from %s", absolute_uri)
        return transport.fetch_bytes(absolute_uri).hex()

    log.warning("No way to obtain key %s", absolute_uri)
    return None
