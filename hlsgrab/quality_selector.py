"""
Select one stream from a master playlist by bandwidth.
"""

import logging
import re
from typing import Union

from hlsgrab.errors import ResolutionError
from hlsgrab.playlist_parser import Playlist, Variant

log = logging.getLogger(__name__)

MIN = 'min'
MAX = 'max'

_UINT = re.compile(r'[0-9]+')

Policy = Union[str, int]


def parse_policy(text: str) -> Policy:
    """
    Turn --bandwidth text into a policy: 'min', 'max' or an exact integer.
    """
    value = text.strip().lower()
    if value in (MIN, MAX):
        return value
    if _UINT.fullmatch(value):
        return int(value)
    raise ValueError(f"invalid bandwidth policy {text!r}, expected min, max or a number")


def select_variant(variants: list, policy: Policy = MAX) -> Variant:
    """
    Pick exactly one variant.

    min/max only consider variants with a numeric bandwidth and return the
    first of the smallest/largest in playlist order. An integer policy
    requires an exact bandwidth match. Variants whose bandwidth is not a
    number can never be selected.
    """
    if isinstance(policy, int):
        for variant in variants:
            if variant.bandwidth == policy:
                return variant
        available = ', '.join(str(v.bandwidth) for v in variants)
        raise ResolutionError(f"No stream with bandwidth {policy} (available: {available})")

    if policy not in (MIN, MAX):
        raise ValueError(f"Unknown bandwidth policy {policy!r}")

    candidates = [v for v in variants if v.bandwidth is not None]
    if len(candidates) < len(variants):
        skipped = [v.url for v in variants if v.bandwidth is None]
        log.warning("Ignoring %d stream(s) with a non-numeric bandwidth: %s", len(skipped), ', '.join(skipped))
    if not candidates:
        raise ResolutionError("No stream with a numeric bandwidth to choose from")

    best = candidates[0]
    for variant in candidates[1:]:
        if policy == MIN and variant.bandwidth < best.bandwidth:
            best = variant
        elif policy == MAX and variant.bandwidth > best.bandwidth:
            best = variant
    return best


def get_stream_info(playlist: Playlist) -> list:
    """
    Extract bandwidth and URI of every variant.
    Return metadata dicts in playlist order.
    """
    if not playlist.is_master:
        return None

    return [
        {'bandwidth': variant.bandwidth, 'uri': variant.url}
        for variant in playlist.variants
    ]
