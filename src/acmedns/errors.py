"""ACME client errors."""
import typing
from typing import Any

import requests

# We import acmedns.messages only during type check to avoid circular dependencies. Type
# references to acmedns.messages.* must be quoted to be lazily initialized.
if typing.TYPE_CHECKING:
    from acmedns import messages  # pragma: no cover


class Error(Exception):
    """Generic ACME client error."""


class ClientError(Error):
    """Network error."""


class DirectoryFetchError(ClientError):
    """The directory could not be fetched or is malformed."""


class UnexpectedUpdate(ClientError):
    """Unexpected update error."""


class NonceError(ClientError):
    """Server response nonce error."""


class BadNonce(NonceError):
    """Bad nonce error."""
    def __init__(self, nonce: str, error: Any, *args: Any) -> None:
        super().__init__(*args)
        self.nonce = nonce
        self.error = error

    def __str__(self) -> str:
        return 'Invalid nonce ({0!r}): {1}'.format(self.nonce, self.error)


class MissingNonce(NonceError):
    """The CA answered without a ``Replay-Nonce`` header.

    RFC 8555 section 6.5 requires one on every successful POST response.

    :ivar requests.Response response: HTTP Response

    """
    def __init__(self, response: requests.Response, *args: Any) -> None:
        super().__init__(*args)
        self.response = response

    def __str__(self) -> str:
        return ('Server {0} response did not include a replay '
                'nonce, headers: {1} (This may be a service outage)'.format(
                    self.response.request.method, self.response.headers))


class ConflictError(ClientError):
    """Error for when the server returns a 409 (Conflict) HTTP status.

    :ivar str location: ``Location`` header of the conflicting resource.
    """
    def __init__(self, location: str) -> None:
        self.location = location
        super().__init__()


class ChallengeNotFoundError(ClientError):
    """The authorization does not offer the requested challenge type.

    :ivar str typ: Requested challenge type.
    :ivar str uri: Authorization URL.

    """
    def __init__(self, typ: str, uri: typing.Optional[str] = None) -> None:
        self.typ = typ
        self.uri = uri
        super().__init__()

    def __str__(self) -> str:
        return 'No {0} challenge offered by authorization {1}'.format(
            self.typ, self.uri or '(unknown)')


class AcmeProtocolError(Error):
    """Problem document returned by the ACME server.

    https://datatracker.ietf.org/doc/html/rfc7807

    Concrete instances are `acmedns.messages.Error` objects, which expose
    ``status`` and ``detail`` as sent by the CA.

    """


class SigningError(Error):
    """The account key could not produce a JWS signature."""


class KeyGenerationError(Error):
    """A key pair or certificate signing request could not be generated."""


class IssuanceError(Error):
    """Error sent by the server after requesting issuance of a certificate."""

    def __init__(self, error: typing.Optional['messages.Error']) -> None:
        """Initialize.

        :param messages.Error error: The error provided by the server, if any.
        """
        self.error = error
        super().__init__()

    def __str__(self) -> str:
        if self.error is None:
            return ('The certificate order failed. No further information '
                    'was provided by the server.')
        return str(self.error)
