"""VAPID signing identity: P-256 key generation and validation.

Keys travel as unpadded URL-safe base64. The public key is the 65-byte
uncompressed point (0x04 || X || Y), the private key the raw 32-byte scalar.
"""

import base64
import binascii
from dataclasses import dataclass

from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from notifications.errors import InvalidKeyFormat

_CURVE = ec.SECP256R1()
_PRIVATE_KEY_SIZE = 32


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(value: str) -> bytes:
    """Strict decode of unpadded URL-safe base64."""
    if "=" in value:
        raise ValueError("padding is not allowed")
    padded = value + "=" * (-len(value) % 4)
    return base64.b64decode(padded, altchars=b"-_", validate=True)


def _encode_public(public_key: ec.EllipticCurvePublicKey) -> str:
    return b64url_encode(
        public_key.public_bytes(Encoding.X962, PublicFormat.UncompressedPoint)
    )


def _encode_private(private_key: ec.EllipticCurvePrivateKey) -> str:
    scalar = private_key.private_numbers().private_value
    return b64url_encode(scalar.to_bytes(_PRIVATE_KEY_SIZE, "big"))


@dataclass(frozen=True)
class VapidKeyPair:
    public_key: str
    private_key: str
    signing_key: ec.EllipticCurvePrivateKey
    verifying_key: ec.EllipticCurvePublicKey

    def encoded_public_key(self) -> str:
        """Re-encode the parsed public point."""
        return _encode_public(self.verifying_key)


def generate_vapid_keys() -> tuple[str, str]:
    """Generate a fresh P-256 key pair as (public, private) base64url strings."""
    private_key = ec.generate_private_key(_CURVE)
    return _encode_public(private_key.public_key()), _encode_private(private_key)


def normalize_contact(contact: str) -> str:
    """Turn a bare email into a ``mailto:`` URI; leave URIs alone."""
    contact = contact.strip()
    if contact.startswith(("mailto:", "https:")):
        return contact
    return f"mailto:{contact}"


def parse_vapid_keys(public_key_b64: str, private_key_b64: str) -> VapidKeyPair:
    """Decode and validate a VAPID key pair.

    Raises:
        InvalidKeyFormat: if either key does not decode, or the public key
            is not a point on P-256.
    """
    try:
        public_bytes = b64url_decode(public_key_b64)
    except (ValueError, binascii.Error) as e:
        raise InvalidKeyFormat(f"decode VAPID public key: {e}") from e

    try:
        verifying_key = ec.EllipticCurvePublicKey.from_encoded_point(
            _CURVE, public_bytes
        )
    except ValueError as e:
        raise InvalidKeyFormat(
            "invalid VAPID public key (not a valid P-256 point)"
        ) from e

    try:
        private_bytes = b64url_decode(private_key_b64)
    except (ValueError, binascii.Error) as e:
        raise InvalidKeyFormat(f"decode VAPID private key: {e}") from e

    if not private_bytes or len(private_bytes) > _PRIVATE_KEY_SIZE:
        raise InvalidKeyFormat(
            f"invalid VAPID private key length ({len(private_bytes)} bytes)"
        )

    try:
        signing_key = ec.derive_private_key(
            int.from_bytes(private_bytes, "big"), _CURVE
        )
    except ValueError as e:
        raise InvalidKeyFormat(f"invalid VAPID private key: {e}") from e

    return VapidKeyPair(
        public_key=public_key_b64,
        private_key=private_key_b64,
        signing_key=signing_key,
        verifying_key=verifying_key,
    )
