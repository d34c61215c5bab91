"""
Exceptions raised while resolving and downloading a stream.
"""


class HLSError(Exception):
    """Base class for every failure that aborts a download."""


class FormatError(HLSError):
    """Playlist or key cache text that does not follow the expected syntax."""


class ResolutionError(HLSError):
    """No variant satisfies the requested bandwidth policy."""


class TransportError(HLSError):
    """
    A playlist, key or segment could not be fetched.
    Carries the URL and the HTTP status (None when no response arrived).
    """

    def __init__(self, url: str, status: int = None, reason: str = None):
        self.url = url
        self.status = status
        message = f"Failed to fetch {url}"
        if status is not None:
            message += f" (HTTP {status})"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class CryptoError(HLSError):
    """Decryption of a segment failed or no key was available."""


class OutputError(HLSError, OSError):
    """Writing the output or scratch storage failed."""
