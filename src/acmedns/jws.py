"""ACME-specific JWS.

The JWS implementation in josepy only implements the base JOSE standard. In
order to support the new header fields defined in ACME, this module defines some
ACME-specific classes that layer on top of josepy.

Requests are always sent in the flattened JSON serialization
(``{"protected": ..., "payload": ..., "signature": ...}``), never in the
compact dot-separated form.
"""
import logging
from typing import Optional

import josepy as jose

from acmedns import errors

logger = logging.getLogger(__name__)


class Header(jose.Header):
    """ACME-specific JOSE Header. Implements nonce, kid, and url.
    """
    nonce: Optional[bytes] = jose.field('nonce', omitempty=True, encoder=jose.encode_b64jose)
    kid: Optional[str] = jose.field('kid', omitempty=True)  # type: ignore[assignment]
    url: Optional[str] = jose.field('url', omitempty=True)

    # Mypy does not understand the josepy magic happening here, and falsely claims
    # that nonce is redefined. Let's ignore the type check here.
    @nonce.decoder  # type: ignore[no-redef,attr-defined,union-attr]
    def nonce(value: str) -> bytes:  # type: ignore[misc]  # pylint: disable=no-self-argument,missing-function-docstring
        try:
            return jose.decode_b64jose(value)
        except jose.DeserializationError as error:
            raise jose.DeserializationError("Invalid nonce: {0}".format(error))


class Signature(jose.Signature):
    """ACME-specific Signature. Uses ACME-specific Header for customer fields."""
    __slots__ = jose.Signature._orig_slots  # type: ignore[attr-defined]  # pylint: disable=protected-access,no-member

    header_cls = Header
    header: Header = jose.field(
        'header', omitempty=True, default=header_cls(),
        decoder=header_cls.from_json)


class JWS(jose.JWS):
    """ACME-specific JWS. Includes nonce, url, and kid in protected header."""
    signature_cls = Signature
    __slots__ = jose.JWS._orig_slots  # type: ignore[attr-defined]  # pylint: disable=protected-access

    @classmethod
    # type: ignore[override]  # pylint: disable=arguments-differ
    def sign(cls, payload: bytes, key: jose.JWK, nonce: Optional[bytes],
             url: Optional[str] = None, kid: Optional[str] = None,
             alg: jose.JWASignature = jose.ES256) -> jose.JWS:
        """Sign ``payload`` for a single ACME request.

        :param bytes payload: JSON request body, or ``b''`` for POST-as-GET.
        :param josepy.JWK key: Account private key.
        :param bytes nonce: Replay nonce consumed by this request.
        :param str url: Target URL of the request.
        :param str kid: Account URL. When ``None``, the public ``jwk`` is
            embedded in the protected header instead.
        :param josepy.JWASignature alg: Signature algorithm.

        :raises .SigningError: if the key cannot produce a signature.

        """
        # RFC 8555 section 6.2: jwk and kid are mutually exclusive, so only include a
        # jwk field if kid is not provided.
        include_jwk = kid is None
        try:
            return super().sign(payload, key=key, alg=alg,
                                protect=frozenset(['nonce', 'url', 'kid', 'jwk', 'alg']),
                                nonce=nonce, url=url, kid=kid,
                                include_jwk=include_jwk)
        except (jose.Error, TypeError, ValueError, AttributeError) as error:
            logger.debug('Signing %s request failed', url, exc_info=True)
            raise errors.SigningError(
                'Unable to sign request to {0}: {1}'.format(url, error)) from error
