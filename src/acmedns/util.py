"""ACME utilities."""
from cryptography.hazmat.primitives import hashes
import josepy as jose


def b64url_encode(data: bytes) -> str:
    """URL-safe base64 encoding without ``=`` padding."""
    return jose.b64encode(data).decode('ascii')


def jwk_thumbprint(jwk: jose.JWK) -> bytes:
    """Compute the RFC 7638 SHA-256 thumbprint of a JWK.

    Only the required public members of the key take part (``crv``,
    ``kty``, ``x`` and ``y`` for EC keys). They are serialized with sorted
    keys and no whitespace, so the digest only depends on the public key.

    :param josepy.JWK jwk: Public or private key.
    :rtype: bytes

    """
    return jwk.thumbprint(hash_function=hashes.SHA256)
