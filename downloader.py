#!/usr/bin/env python3
"""
Main entry point for the HLS downloader.
"""

import sys
import os
import re
import logging
import argparse
from types import MappingProxyType

from hlsgrab import generic_url_handler
from hlsgrab import metadata_extractor
from hlsgrab import playlist_parser
from hlsgrab import quality_selector
from hlsgrab import url_utils
from hlsgrab.config import DownloadConfig
from hlsgrab.errors import HLSError
from hlsgrab.key_resolver import load_key_cache
from hlsgrab.segment_downloader import download_video, print_progress, resolve_media_playlist
from hlsgrab.transport import HttpTransport, get_browser_headers

from hlsgrab import __version__


def sanitize_filename(filename: str) -> str:
    """
    Sanitize filename for filesystem use.
    """
    # Remove or replace invalid characters
    filename = re.sub(r'[<>:"/\\|?*]', '_', filename)
    filename = filename.strip()
    # Remove leading/trailing dots and spaces
    filename = filename.strip('. ')
    return filename


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Download an HLS (m3u8) stream into a single file',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Direct m3u8 URL, highest bandwidth
  python downloader.py "https://.../playlist.m3u8"

  # Lowest bandwidth, key taken from a cache file
  python downloader.py -b min --key-cache keys.txt "https://.../playlist.m3u8"

  # Web page with a <video> tag pointing at a playlist
  python downloader.py "https://example.com/watch/123"
        """
    )
    parser.add_argument('url', help='M3U8 playlist URL or web page URL')
    parser.add_argument('-f', '--filename', help='filename (optional, without extension)')
    parser.add_argument('-o', '--out-dir', help='output directory (optional)')
    parser.add_argument('-b', '--bandwidth', type=quality_selector.parse_policy, default=quality_selector.MAX,
                        help='stream to pick from a master playlist: min, max or an exact bandwidth (default: max)')
    parser.add_argument('-k', '--key', help='AES-128 key as hex, overrides every other key source')
    parser.add_argument('--key-cache', help='file with "<key URI> <hex key>" lines')
    parser.add_argument('-v', '--verbose', action='store_true', help='show debug output')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    return parser


def main():
    """
    Main workflow for downloading HLS streams.
    """
    args = build_parser().parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s'
    )

    print(f"hlsgrab v{__version__}\n")

    url = args.url
    video_name = None
    playlist_url = url
    output_dir = args.out_dir or os.getcwd()

    key_cache = MappingProxyType({})
    if args.key_cache:
        try:
            key_cache = load_key_cache(args.key_cache)
        except HLSError as e:
            print(f"ERROR: {e}")
            sys.exit(1)

    config = DownloadConfig(
        bandwidth=args.bandwidth,
        cli_key=args.key,
        key_cache=key_cache,
        headers=get_browser_headers(url),
    )

    with HttpTransport(config.headers, config.timeout) as transport:
        # Step 1: URL Type Detection
        print(f"Processing URL: {url}")

        if generic_url_handler.is_generic_url(url):
            print("Detected generic URL, extracting m3u8 playlist...")
            result = generic_url_handler.resolve_generic_url(url, transport)
            if not result:
                print("ERROR: Failed to find a playlist on the page.")
                sys.exit(1)

            playlist_url = result['playlist_url']
            video_name = result.get('video_name')
            print(f"Extracted playlist URL: {playlist_url}")
            if video_name:
                print(f"Extracted video name: {video_name}")

        # Step 2: Parse playlist and pick a stream
        print("\nFetching and parsing playlist...")
        try:
            playlist = resolve_media_playlist(playlist_url, config.bandwidth, transport)
        except HLSError as e:
            print(f"ERROR: {e}")
            sys.exit(1)

        if not playlist_parser.validate_playlist(playlist):
            print(f"ERROR: Playlist {playlist.url} has no segments")
            sys.exit(1)

        # Step 3: Metadata and filename
        segment_info = metadata_extractor.extract_segment_info(playlist)
        encryption_info = metadata_extractor.extract_encryption_info(playlist)
        if encryption_info:
            print(f"Encryption: {encryption_info['method']}")
        print(f"Total segments: {segment_info['total_segments']}")

        file_extension = metadata_extractor.extract_file_extension(playlist)
        if not file_extension:
            print(f"No file extension detected, defaulting to {metadata_extractor.DEFAULT_EXTENSION}")
            file_extension = metadata_extractor.DEFAULT_EXTENSION

        if args.filename:
            output_filename = sanitize_filename(args.filename) + f'.{file_extension}'
        elif video_name:
            output_filename = sanitize_filename(video_name) + f'.{file_extension}'
        else:
            uuid = url_utils.extract_uuid_from_url(playlist_url)
            if uuid:
                output_filename = f"{uuid}.{file_extension}"
            else:
                output_filename = f"output.{file_extension}"

        output_path = os.path.join(output_dir, output_filename)
        if os.path.exists(output_path):
            print(f"ERROR: File \"{output_filename}\" already exists in \"{output_dir}\"")
            sys.exit(1)

        # Step 4: Download
        print(f"\nStarting download...")
        print(f"Playlist URL: {playlist.url}")
        print(f"Output: {output_path}")
        print("-" * 80)

        result = download_video(playlist.url, output_path, config, transport, progress=print_progress, playlist=playlist)

    print("-" * 80)
    if not result.ok:
        print(f"ERROR: {result.error}")
        sys.exit(1)

    print(f"✓ Download complete: {output_filename}")
    print(f"✓ {result.bytes_written / (1024 * 1024):.2f} MB written to {output_path}")


if __name__ == "__main__":
    main()
