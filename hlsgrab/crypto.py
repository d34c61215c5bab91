"""
AES-128-CBC decryption of downloaded segment files.
"""

from pathlib import Path

from Crypto.Cipher import AES
from Crypto.Util.Padding import unpad

from hlsgrab.errors import CryptoError, OutputError


def decrypt_file(src, hex_key: str, hex_iv: str, dst) -> Path:
    """
    Decrypt src into dst with the given hex key and IV.
    PKCS7 padding is removed when present.
    """
    src, dst = Path(src), Path(dst)
    try:
        key = bytes.fromhex(hex_key)
        iv = bytes.fromhex(hex_iv)
    except ValueError as e:
        raise CryptoError(f"Invalid key or IV for {src}: {e}") from e
    if len(key) != 16:
        raise CryptoError(f"Invalid key length for {src}: {len(key)} bytes (expected 16)")

    try:
        data = src.read_bytes()
    except OSError as e:
        raise OutputError(f"Failed to read scratch file {src}: {e}") from e

    try:
        cipher = AES.new(key, AES.MODE_CBC, iv)
        decrypted = cipher.decrypt(data)
    except ValueError as e:
        raise CryptoError(f"Decryption of {src} failed: {e}") from e

    try:
        decrypted = unpad(decrypted, AES.block_size, style='pkcs7')
    except ValueError:
        # Not padded, keep the plaintext as is
        pass

    try:
        dst.write_bytes(decrypted)
    except OSError as e:
        raise OutputError(f"Failed to write scratch file {dst}: {e}") from e
    return dst
