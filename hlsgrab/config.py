"""
Settings for one download run, built once and passed to every step.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional

from hlsgrab.quality_selector import MAX, Policy

PLAYLIST_TIMEOUT = 30


@dataclass(frozen=True)
class DownloadConfig:
    bandwidth: Policy = MAX
    cli_key: Optional[str] = None
    key_cache: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    headers: Optional[dict] = None
    timeout: float = PLAYLIST_TIMEOUT
    scratch_dir: Optional[str] = None
