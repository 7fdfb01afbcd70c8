"""WireGuard key utilities.

WireGuard keys are raw 32-byte X25519 keys encoded as standard base64.
"""

import base64
import binascii

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey

WG_KEY_LEN = 32


class WireGuardKeys:
    """Utility class for WireGuard key operations."""

    @staticmethod
    def decode(key: str) -> bytes:
        """Decode a base64 WireGuard key, raising ValueError if malformed."""
        try:
            raw = base64.b64decode(key.strip(), validate=True)
        except binascii.Error as e:
            msg = f"Malformed WireGuard key: {e}"
            raise ValueError(msg) from e
        if len(raw) != WG_KEY_LEN:
            msg = f"WireGuard key must be {WG_KEY_LEN} bytes, got {len(raw)}"
            raise ValueError(msg)
        return raw

    @staticmethod
    def is_valid(key: str) -> bool:
        """Check whether a string is a well-formed WireGuard key."""
        try:
            WireGuardKeys.decode(key)
        except ValueError:
            return False
        return True

    @staticmethod
    def generate_private_key() -> str:
        """Generate a private key in the same format as `wg genkey`."""
        private_key = X25519PrivateKey.generate()
        raw = private_key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        )
        return base64.b64encode(raw).decode()

    @staticmethod
    def public_key_from_private(private_key: str) -> str:
        """Derive the public key for a private key, like `wg pubkey`."""
        priv = X25519PrivateKey.from_private_bytes(WireGuardKeys.decode(private_key))
        raw = priv.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        return base64.b64encode(raw).decode()
