"""ACME protocol messages (RFC 8555 section 7).

Request and response bodies are `josepy` JSON objects. Resources pair a
body with the URL the CA gave it (``Location`` header or link).
"""
from collections.abc import Hashable
from collections.abc import Mapping
import datetime
import numbers
from typing import Any
from typing import Dict
from typing import List
from typing import Optional
from typing import Tuple

import josepy as jose

from acmedns import challenges
from acmedns import errors
from acmedns import fields

ERROR_PREFIX = 'urn:ietf:params:acme:error:'

ERROR_CODES = {
    'accountDoesNotExist': 'No account is registered for this key',
    'badCSR': 'The CA rejected the certificate signing request',
    'badNonce': 'The anti-replay nonce was not accepted',
    'badPublicKey': 'The CA does not support the account key',
    'badSignatureAlgorithm': 'The CA does not support the signature algorithm',
    'caa': 'CAA records forbid this CA from issuing for the domain',
    'compound': 'See the subproblems for the individual errors',
    'connection': 'The CA could not connect to the validation target',
    'dns': 'A DNS query made during validation failed',
    'dnssec': 'DNSSEC validation of the domain failed',
    'incorrectResponse': 'The challenge response did not match',
    'invalidContact': 'A contact URL is invalid',
    'malformed': 'The request was malformed',
    'orderNotReady': 'The order cannot be finalized yet',
    'rateLimited': 'A rate limit was exceeded',
    'rejectedIdentifier': 'The CA will not issue for this identifier',
    'serverInternal': 'The CA had an internal error',
    'unauthorized': 'The account is not authorized for this request',
    'unknownHost': 'The CA could not resolve the domain',
    'unsupportedContact': 'A contact URL uses an unsupported scheme',
    'unsupportedIdentifier': 'The identifier type is not supported',
    'userActionRequired': 'Follow the instance URL to continue',
    'externalAccountRequired': 'The CA requires external account binding',
}
"""ACME error codes (RFC 8555 section 6.7) with short descriptions."""


def is_problem_document(jobj: Any) -> bool:
    """Does a decoded JSON body carry an RFC 7807 error status?

    Resources use string statuses (``"pending"``, ``"valid"``...), so only
    a numeric ``status`` of 400 or more marks a problem.

    """
    if not isinstance(jobj, Mapping):
        return False
    status = jobj.get('status')
    return (isinstance(status, numbers.Real) and not isinstance(status, bool)
            and status >= 400)


class _Constant(jose.JSONDeSerializable, Hashable):
    """Enumerated string value. Each subclass keeps its own registry."""
    __slots__ = ('name',)
    POSSIBLE_NAMES: Dict[str, '_Constant'] = NotImplemented

    def __init__(self, name: str) -> None:
        super().__init__()
        self.POSSIBLE_NAMES[name] = self  # pylint: disable=unsupported-assignment-operation
        self.name = name

    def to_partial_json(self) -> str:
        return self.name

    @classmethod
    def from_json(cls, jobj: str) -> '_Constant':
        try:
            return cls.POSSIBLE_NAMES[jobj]  # pylint: disable=unsubscriptable-object
        except (KeyError, TypeError):
            raise jose.DeserializationError(f'{cls.__name__} not recognized: {jobj!r}')

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({self.name})'

    def __eq__(self, other: Any) -> bool:
        return isinstance(other, type(self)) and other.name == self.name

    def __hash__(self) -> int:
        return hash((self.__class__, self.name))


class IdentifierType(_Constant):
    """Identifier type. Only DNS names are used."""
    POSSIBLE_NAMES: Dict[str, _Constant] = {}


IDENTIFIER_FQDN = IdentifierType('dns')


class Identifier(jose.JSONObjectWithFields):
    """Identifier a certificate is requested for.

    :ivar IdentifierType typ:
    :ivar str value: Domain name.

    """
    typ: IdentifierType = jose.field('type', decoder=IdentifierType.from_json)
    value: str = jose.field('value')


class Error(jose.JSONObjectWithFields, errors.AcmeProtocolError):
    """Problem document, raised as an exception.

    https://datatracker.ietf.org/doc/html/rfc7807

    :ivar str typ: Problem type URI, ``about:blank`` when absent.
    :ivar str title:
    :ivar int status: HTTP status reported by the CA.
    :ivar str detail: Human readable explanation from the CA.
    :ivar Identifier identifier: Identifier the problem is about, if any.
    :ivar tuple subproblems: Nested `Error` objects of a compound problem.

    """
    typ: str = jose.field('type', omitempty=True, default='about:blank')
    title: str = jose.field('title', omitempty=True)
    status: int = jose.field('status', omitempty=True)
    detail: str = jose.field('detail', omitempty=True)
    identifier: Optional[Identifier] = jose.field(
        'identifier', decoder=Identifier.from_json, omitempty=True)
    subproblems: Optional[Tuple['Error', ...]] = jose.field('subproblems', omitempty=True)

    @subproblems.decoder  # type: ignore
    def subproblems(value: List[Dict[str, Any]]) -> Tuple['Error', ...]:  # pylint: disable=no-self-argument,missing-function-docstring
        return tuple(Error.from_json(subproblem) for subproblem in value)

    @classmethod
    def with_code(cls, code: str, **kwargs: Any) -> 'Error':
        """Build an error of type ``ERROR_PREFIX + code``.

        :raises ValueError: if ``code`` is not in `ERROR_CODES`

        """
        if code not in ERROR_CODES:
            raise ValueError(f'Unknown ACME error code: {code}')
        return cls(typ=ERROR_PREFIX + code, **kwargs)

    @property
    def code(self) -> Optional[str]:
        """ACME error code, e.g. ``badNonce``, or ``None`` for other types."""
        typ = str(self.typ)
        if typ.startswith(ERROR_PREFIX) and typ[len(ERROR_PREFIX):] in ERROR_CODES:
            return typ[len(ERROR_PREFIX):]
        return None

    @property
    def description(self) -> Optional[str]:
        """Description of the error code, if it is an ACME one."""
        return ERROR_CODES.get(self.code) if self.code else None

    # Exceptions get attributes such as __traceback__ assigned when raised.
    def __setattr__(self, name: str, value: Any) -> None:
        object.__setattr__(self, name, value)

    def __str__(self) -> str:
        parts = [part for part in (self.typ, self.description, self.detail, self.title)
                 if part is not None]
        text = ' :: '.join(parts).encode('ascii', 'backslashreplace').decode()
        if self.identifier is not None:
            text = f'Problem for {self.identifier.value}: {text}'  # pylint: disable=no-member
        return '\n'.join([text] + [str(sub) for sub in self.subproblems or ()])


class Status(_Constant):
    """Status of an account, order, authorization or challenge."""
    POSSIBLE_NAMES: Dict[str, _Constant] = {}


STATUS_PENDING = Status('pending')
STATUS_READY = Status('ready')
STATUS_PROCESSING = Status('processing')
STATUS_VALID = Status('valid')
STATUS_INVALID = Status('invalid')
STATUS_DEACTIVATED = Status('deactivated')
STATUS_EXPIRED = Status('expired')
STATUS_REVOKED = Status('revoked')


class Directory(jose.JSONDeSerializable):
    """Directory of CA endpoints (RFC 8555 section 7.1.1).

    Endpoints are read with their RFC names, as items or attributes:
    ``directory['newOrder']`` or ``directory.newOrder``.
    """

    REQUIRED = ('newNonce', 'newAccount', 'newOrder')
    """Endpoints this client cannot work without."""

    class Meta(jose.JSONObjectWithFields):
        """Directory metadata."""
        terms_of_service: str = jose.field('termsOfService', omitempty=True)
        website: str = jose.field('website', omitempty=True)
        caa_identities: List[str] = jose.field('caaIdentities', omitempty=True)
        external_account_required: bool = jose.field('externalAccountRequired',
                                                     omitempty=True)

    def __init__(self, jobj: Mapping[str, Any]) -> None:
        self._jobj = jobj

    def __getattr__(self, name: str) -> Any:
        try:
            return self[name]
        except KeyError as error:
            raise AttributeError(str(error))

    def __getitem__(self, name: str) -> Any:
        try:
            return self._jobj[name]
        except KeyError:
            raise KeyError(f'Directory field "{name}" not found')

    def to_partial_json(self) -> Dict[str, Any]:
        return dict(self._jobj)

    @classmethod
    def from_json(cls, jobj: Mapping[str, Any]) -> 'Directory':
        if not isinstance(jobj, Mapping):
            raise jose.DeserializationError('Directory must be a JSON object')
        missing = [name for name in cls.REQUIRED if not isinstance(jobj.get(name), str)]
        if missing:
            raise jose.DeserializationError(
                'Directory is missing endpoints: {0}'.format(', '.join(missing)))
        jobj = dict(jobj)
        meta = jobj.pop('meta', {})
        if not isinstance(meta, Mapping):
            raise jose.DeserializationError('Directory meta must be a JSON object')
        jobj['meta'] = cls.Meta.from_json(meta)
        return cls(jobj)


class ResourceBody(jose.JSONObjectWithFields):
    """Body of an ACME resource."""


class Resource(jose.JSONObjectWithFields):
    """ACME resource.

    :ivar ResourceBody body:

    """
    body: ResourceBody = jose.field('body')


class ResourceWithURI(Resource):
    """ACME resource with its URL.

    :ivar str uri:

    """
    uri: str = jose.field('uri')


class Registration(ResourceBody):
    """Account object.

    :ivar josepy.JWK key: Account public key, when the CA echoes it.
    :ivar tuple contact: Contact URLs, e.g. ``mailto:`` addresses.
    :ivar Status status:

    """
    key: jose.JWK = jose.field('key', omitempty=True, decoder=jose.JWK.from_json)
    contact: Tuple[str, ...] = jose.field('contact', omitempty=True, default=())
    status: Status = jose.field('status', omitempty=True, decoder=Status.from_json)
    terms_of_service_agreed: bool = jose.field('termsOfServiceAgreed', omitempty=True)
    only_return_existing: bool = jose.field('onlyReturnExisting', omitempty=True)
    orders: str = jose.field('orders', omitempty=True)

    email_prefix = 'mailto:'

    @classmethod
    def from_data(cls, email: Optional[str] = None, **kwargs: Any) -> 'Registration':
        """Build an account object, turning ``email`` into contact URLs.

        :param str email: Comma separated e-mail addresses.

        """
        if email is not None:
            mailto = tuple(cls.email_prefix + address for address in email.split(','))
            kwargs['contact'] = tuple(kwargs.pop('contact', ())) + mailto
        return cls(**kwargs)

    @property
    def emails(self) -> Tuple[str, ...]:
        """Addresses of the ``mailto:`` contacts."""
        return tuple(contact[len(self.email_prefix):]
                     for contact in self.contact  # pylint: disable=not-an-iterable
                     if contact.startswith(self.email_prefix))


class NewRegistration(Registration):
    """newAccount payload.

    ``onlyReturnExisting`` is always sent, so that the CA can tell a login
    from an account creation.
    """
    only_return_existing: bool = jose.field('onlyReturnExisting', default=False)


class RegistrationResource(ResourceWithURI):
    """Account with its URL, the ``kid`` of later requests.

    :ivar Registration body:
    :ivar str uri:

    """
    body: Registration = jose.field('body', decoder=Registration.from_json)


class ChallengeBody(ResourceBody):
    """Challenge as listed in an authorization.

    Attributes of the wrapped challenge are readable on the body itself:
    ``challb.token`` is ``challb.chall.token``.

    :ivar challenges.Challenge chall:
    :ivar str uri: Challenge URL, ``url`` in JSON.
    :ivar Status status:
    :ivar datetime.datetime validated:
    :ivar Error error: Why validation failed, if it did.

    """
    __slots__ = ('chall',)
    uri: str = jose.field('url', omitempty=True, default=None)
    status: Status = jose.field('status', decoder=Status.from_json,
                                omitempty=True, default=STATUS_PENDING)
    validated: datetime.datetime = fields.rfc3339('validated', omitempty=True)
    error: Error = jose.field('error', decoder=Error.from_json,
                              omitempty=True, default=None)

    def to_partial_json(self) -> Dict[str, Any]:
        jobj = super().to_partial_json()
        jobj.update(self.chall.to_partial_json())
        return jobj

    @classmethod
    def fields_from_json(cls, jobj: Mapping[str, Any]) -> Dict[str, Any]:
        jobj_fields = super().fields_from_json(jobj)
        jobj_fields['chall'] = challenges.Challenge.from_json(jobj)
        return jobj_fields

    def __getattr__(self, name: str) -> Any:
        return getattr(self.chall, name)


class ChallengeResource(Resource):
    """Challenge returned after answering it.

    :ivar ChallengeBody body:
    :ivar str authzr_uri: Authorization URL from the ``up`` link, if any.

    """
    body: ChallengeBody = jose.field('body', decoder=ChallengeBody.from_json)
    authzr_uri: Optional[str] = jose.field('authzr_uri', omitempty=True)

    @property
    def uri(self) -> str:
        """Challenge URL."""
        return self.body.uri  # pylint: disable=no-member


class Authorization(ResourceBody):
    """Authorization of one identifier.

    :ivar Identifier identifier:
    :ivar tuple challenges: `ChallengeBody` objects, one per offered type.
    :ivar Status status:
    :ivar datetime.datetime expires:

    """
    identifier: Identifier = jose.field('identifier', decoder=Identifier.from_json,
                                        omitempty=True)
    challenges: Tuple[ChallengeBody, ...] = jose.field('challenges', omitempty=True)
    status: Status = jose.field('status', omitempty=True, decoder=Status.from_json)
    expires: datetime.datetime = fields.rfc3339('expires', omitempty=True)
    wildcard: bool = jose.field('wildcard', omitempty=True)

    @challenges.decoder  # type: ignore
    def challenges(value: List[Dict[str, Any]]) -> Tuple[ChallengeBody, ...]:  # pylint: disable=no-self-argument,missing-function-docstring
        return tuple(ChallengeBody.from_json(chall) for chall in value)


class UpdateAuthorization(Authorization):
    """Authorization update, used to deactivate one."""


class AuthorizationResource(ResourceWithURI):
    """Authorization with its URL.

    :ivar Authorization body:

    """
    body: Authorization = jose.field('body', decoder=Authorization.from_json)


class CertificateRequest(jose.JSONObjectWithFields):
    """finalize payload.

    :ivar bytes csr: DER encoded CSR, sent as unpadded base64url.

    """
    csr: bytes = jose.field(
        'csr', decoder=jose.decode_b64jose, encoder=jose.encode_b64jose)


class Order(ResourceBody):
    """Order object.

    :ivar tuple identifiers: `Identifier` objects.
    :ivar Status status:
    :ivar tuple authorizations: Authorization URLs.
    :ivar str finalize: URL to POST the CSR to.
    :ivar str certificate: Chain URL, once the certificate is issued.
    :ivar datetime.datetime expires:
    :ivar Error error: Why the order became invalid, if it did.

    """
    identifiers: Tuple[Identifier, ...] = jose.field('identifiers', omitempty=True)
    status: Status = jose.field('status', decoder=Status.from_json, omitempty=True)
    authorizations: Tuple[str, ...] = jose.field('authorizations', omitempty=True)
    certificate: str = jose.field('certificate', omitempty=True)
    finalize: str = jose.field('finalize', omitempty=True)
    expires: datetime.datetime = fields.rfc3339('expires', omitempty=True)
    error: Error = jose.field('error', omitempty=True, decoder=Error.from_json)

    @identifiers.decoder  # type: ignore
    def identifiers(value: List[Dict[str, Any]]) -> Tuple[Identifier, ...]:  # pylint: disable=no-self-argument,missing-function-docstring
        return tuple(Identifier.from_json(identifier) for identifier in value)


class NewOrder(Order):
    """newOrder payload."""


class OrderResource(ResourceWithURI):
    """Order with its URL and what was fetched for it so far.

    :ivar Order body:
    :ivar tuple authorizations: Fetched `AuthorizationResource` objects.
    :ivar str fullchain_pem: Downloaded certificate chain.

    """
    body: Order = jose.field('body', decoder=Order.from_json)
    authorizations: Tuple[AuthorizationResource, ...] = jose.field(
        'authorizations', omitempty=True, default=())
    fullchain_pem: str = jose.field('fullchain_pem', omitempty=True)

    @authorizations.decoder  # type: ignore
    def authorizations(value: List[Dict[str, Any]]) -> Tuple[AuthorizationResource, ...]:  # pylint: disable=no-self-argument,missing-function-docstring
        return tuple(AuthorizationResource.from_json(authz) for authz in value)
