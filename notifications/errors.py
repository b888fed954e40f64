class InvalidKeyFormat(ValueError):
    """VAPID key material is malformed or not a point on P-256."""


class TransportFailure(Exception):
    """The push service could not be reached (no HTTP response)."""
