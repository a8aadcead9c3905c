"""ACME challenges.

Authorizations list every challenge type the CA accepts for an identifier.
Only ``dns-01`` is modelled; entries of other types are kept as
`UnrecognizedChallenge` so the authorization still parses.
"""
import functools
import hashlib
import logging
from collections.abc import Mapping
from typing import Any
from typing import Dict
from typing import Type
from typing import Union

import josepy as jose

from acmedns import util

logger = logging.getLogger(__name__)


class Challenge(jose.TypedJSONObjectWithFields):
    """Challenge offered in an authorization, keyed by its ``type``."""
    TYPES: Dict[str, Type['Challenge']] = {}

    @classmethod
    def from_json(cls, jobj: Mapping[str, Any]) -> Union['Challenge', 'UnrecognizedChallenge']:
        try:
            return super().from_json(jobj)
        except jose.UnrecognizedTypeError:
            logger.debug('Keeping challenge of unsupported type %r', jobj.get('type'))
            return UnrecognizedChallenge.from_json(jobj)


class ChallengeResponse(jose.TypedJSONObjectWithFields):
    """Body POSTed to a challenge URL to have it validated."""
    TYPES: Dict[str, Type['ChallengeResponse']] = {}

    def to_partial_json(self) -> Dict[str, Any]:
        # RFC 8555 responses do not repeat the challenge type.
        jobj = super().to_partial_json()
        del jobj[self.type_field_name]
        return jobj


class UnrecognizedChallenge(Challenge):
    """Challenge of a type this client does not answer.

    :ivar dict jobj: The challenge as sent by the CA.

    """
    jobj: Dict[str, Any]

    def __init__(self, jobj: Mapping[str, Any]) -> None:
        super().__init__()
        object.__setattr__(self, 'jobj', jobj)

    def to_partial_json(self) -> Dict[str, Any]:
        return self.jobj  # pylint: disable=no-member

    @classmethod
    def from_json(cls, jobj: Mapping[str, Any]) -> 'UnrecognizedChallenge':
        return cls(jobj)


@ChallengeResponse.register
class DNS01Response(ChallengeResponse):
    """Answer to a dns-01 challenge.

    The CA recomputes the key authorization itself, so it is kept on the
    object for the caller but never serialized: the body is ``{}``.

    :ivar str key_authorization:

    """
    typ = 'dns-01'
    key_authorization: str = jose.field('keyAuthorization', omitempty=True)

    def to_partial_json(self) -> Dict[str, Any]:
        jobj = super().to_partial_json()
        jobj.pop('keyAuthorization', None)
        return jobj


@Challenge.register
class DNS01(Challenge):
    """dns-01 challenge (RFC 8555 section 8.4).

    :ivar bytes token: Random token chosen by the CA, at least 128 bits.

    """
    typ = DNS01Response.typ

    LABEL = '_acme-challenge'
    """Label prepended to the validated domain to name the TXT record."""

    MIN_TOKEN_SIZE = 16

    token: bytes = jose.field(
        'token', encoder=jose.encode_b64jose, decoder=functools.partial(
            jose.decode_b64jose, size=MIN_TOKEN_SIZE, minimum=True))

    def key_authorization(self, account_key: jose.JWK) -> str:
        """``token.thumbprint``, both base64url encoded."""
        return '{0}.{1}'.format(
            self.encode('token'), util.b64url_encode(util.jwk_thumbprint(account_key)))

    def validation(self, account_key: jose.JWK) -> str:
        """Text of the TXT record proving control of the domain.

        :param josepy.JWK account_key: Account key, private or public.
        :returns: base64url SHA-256 digest of the key authorization,
            43 characters long.
        :rtype: str

        """
        digest = hashlib.sha256(self.key_authorization(account_key).encode('ascii'))
        return util.b64url_encode(digest.digest())

    def validation_domain_name(self, name: str) -> str:
        """Full name of the TXT record for domain ``name``."""
        return '{0}.{1}'.format(self.LABEL, name)

    def response(self, account_key: jose.JWK) -> DNS01Response:
        """Answer to POST once the TXT record is published."""
        return DNS01Response(key_authorization=self.key_authorization(account_key))
