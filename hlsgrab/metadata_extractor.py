"""
Extract encryption, extension and segment metadata from playlists.
"""

import posixpath
from urllib.parse import urlparse

from hlsgrab.playlist_parser import Playlist

DEFAULT_EXTENSION = 'ts'

# Segment container to output extension
KNOWN_EXTENSIONS = {
    'ts': 'ts',
    'mpegts': 'ts',
    'aac': 'aac',
    'mp3': 'mp3',
    'mp4': 'mp4',
    'm4s': 'mp4',
    'm4v': 'mp4',
    'm4a': 'm4a',
    'webm': 'webm',
}


def extract_encryption_info(playlist: Playlist) -> dict:
    """
    Return: {method, uri, iv} or None
    """
    if playlist.encryption is None:
        return None
    return {
        'method': playlist.encryption.method,
        'uri': playlist.encryption.key_uri,
        'iv': playlist.encryption.iv,
    }


def extract_segment_info(playlist: Playlist) -> dict:
    """
    Return: {total_segments, first_sequence, encrypted, playlist_type}
    """
    if playlist.is_master:
        return {
            'total_segments': 0,
            'first_sequence': None,
            'encrypted': False,
            'playlist_type': 'master'
        }

    return {
        'total_segments': len(playlist.segments),
        'first_sequence': min(playlist.segments) if playlist.segments else None,
        'encrypted': playlist.encryption is not None,
        'playlist_type': 'media'
    }


def extract_file_extension(playlist: Playlist) -> str:
    """
    Guess the output extension from the first segment URI.
    Return: file extension or None
    """
    if playlist.is_master or not playlist.segments:
        return None

    first_uri = playlist.segments[min(playlist.segments)]
    suffix = posixpath.splitext(urlparse(first_uri).path)[1].lstrip('.').lower()
    return KNOWN_EXTENSIONS.get(suffix)
