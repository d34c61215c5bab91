"""
Handle generic URLs (non-m3u8) and extract playlist URLs from HTML.
"""

import json
import logging
import re

from bs4 import BeautifulSoup

from hlsgrab.errors import TransportError
from hlsgrab.url_utils import build_absolute_url

log = logging.getLogger(__name__)


def is_generic_url(url: str) -> bool:
    """
    Check if URL is a generic URL (no .m3u8 extension).
    Return True if generic, False if direct m3u8 URL.
    """
    return '.m3u8' not in url


def fetch_html(url: str, transport) -> str:
    """
    Fetch HTML content from generic URL.
    """
    response = transport.fetch_bytes(url)
    return response.decode('utf-8', errors='replace')


def extract_media_tag_url(html: str, page_url: str) -> str:
    """
    Return the first m3u8 URL referenced by a <video src> or
    <source src> tag, made absolute against page_url.
    """
    soup = BeautifulSoup(html, 'html.parser')
    for tag in soup.find_all(['video', 'source']):
        src = tag.get('src')
        if src and '.m3u8' in src:
            return build_absolute_url(page_url, src)
    return None


def extract_json_ld(html: str) -> dict:
    """
    Parse HTML and find <script type="application/ld+json"> tag.
    Extract and parse JSON-LD content.
    Return parsed JSON object or None.
    """
    soup = BeautifulSoup(html, 'html.parser')
    json_ld_scripts = soup.find_all('script', type='application/ld+json')

    for script in json_ld_scripts:
        try:
            json_data = json.loads(script.string)
        except (json.JSONDecodeError, TypeError):
            continue
        if isinstance(json_data, dict) and json_data.get('@type') == 'VideoObject':
            return json_data

    return None


def extract_playlist_url_from_json_ld(json_ld: dict) -> str:
    """
    Use contentUrl when it points at a playlist, otherwise swap the
    file name of thumbnailUrl for playlist.m3u8.
    """
    content_url = json_ld.get('contentUrl')
    if content_url and '.m3u8' in content_url:
        return content_url

    thumbnail_url = json_ld.get('thumbnailUrl')
    if not thumbnail_url:
        return None

    # The thumbnail is not always called "thumbnail.jpg"
    playlist_url_parts = thumbnail_url.split('/')
    playlist_url_parts[-1] = 'playlist.m3u8'
    return '/'.join(playlist_url_parts)


def extract_video_name_from_json_ld(json_ld: dict) -> str:
    """
    Extract name field from JSON-LD VideoObject.
    Clean filename (remove .mp4 extension if present).
    """
    name = json_ld.get('name')
    if not name:
        return None

    if name.endswith('.mp4'):
        name = name[:-4]

    name = re.sub(r'[<>:"/\\|?*]', '_', name)
    return name.strip()


def resolve_generic_url(url: str, transport) -> dict:
    """
    Main function: resolve generic URL to m3u8 playlist URL.
    Returns: {playlist_url: str, video_name: str} or None
    """
    try:
        html = fetch_html(url, transport)
    except TransportError as e:
        log.warning("Could not fetch page: %s", e)
        return None

    playlist_url = extract_media_tag_url(html, url)
    video_name = None

    json_ld = extract_json_ld(html)
    if json_ld:
        video_name = extract_video_name_from_json_ld(json_ld)
        if not playlist_url:
            playlist_url = extract_playlist_url_from_json_ld(json_ld)

    if not playlist_url:
        return None

    return {
        'playlist_url': playlist_url,
        'video_name': video_name,
    }
