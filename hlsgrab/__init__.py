"""
Download HLS (m3u8) streams into a single file.
"""

__version__ = "1.0.0"
