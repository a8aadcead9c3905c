"""ACME client API."""
import base64
import http.client as http_client
import logging
import re
from typing import Any
from typing import List
from typing import Optional
from typing import Sequence
from typing import Set
from typing import Type
from typing import Union

import josepy as jose
import requests
from requests.adapters import HTTPAdapter

from acmedns import challenges
from acmedns import crypto_util
from acmedns import errors
from acmedns import jws
from acmedns import messages

logger = logging.getLogger(__name__)

DEFAULT_NETWORK_TIMEOUT = 45


class ClientV2:
    """ACME client for a v2 API.

    Every method drives one step of the order lifecycle with a single
    request; none of them waits for the CA to change a resource status.

    :ivar messages.Directory directory:
    :ivar .ClientNetwork net: Client network.
    """

    def __init__(self, directory: messages.Directory, net: 'ClientNetwork') -> None:
        """Initialize.

        :param .messages.Directory directory: Directory Resource
        :param .ClientNetwork net: Client network.
        """
        self.directory = directory
        self.net = net

    @classmethod
    def get_directory(cls, url: str, net: 'ClientNetwork') -> messages.Directory:
        """
        Retrieves the ACME directory (RFC 8555 section 7.1.1) from the ACME server.
        :param str url: the URL where the ACME directory is available
        :param ClientNetwork net: the ClientNetwork to use to make the request

        :raises .DirectoryFetchError: if the directory is unreachable or malformed

        :returns: the ACME directory object
        :rtype: messages.Directory
        """
        try:
            return messages.Directory.from_json(net.get(url).json())
        except (errors.Error, jose.DeserializationError,
                requests.exceptions.RequestException, ValueError) as error:
            raise errors.DirectoryFetchError(
                f'Unable to fetch ACME directory from {url}: {error}') from error

    def new_nonce(self) -> bytes:
        """Fetch a fresh nonce from the ``newNonce`` endpoint.

        :raises .NonceError: if the response carries no usable nonce

        """
        return self.net.fetch_nonce(self.directory['newNonce'])

    def new_account(self, new_account: messages.NewRegistration) -> messages.RegistrationResource:
        """Create an account, or look one up with ``onlyReturnExisting``.

        The request is signed with the account public JWK, as no account
        URL is known yet.

        :param .NewRegistration new_account:

        :raises .ClientError: if the response has no ``Location`` header

        :returns: Registration Resource.
        :rtype: `.RegistrationResource`
        """
        self.net.account = None
        response = self._post(self.directory['newAccount'], new_account)
        if 'Location' not in response.headers:
            raise errors.ClientError('"Location" header missing from account response')
        if response.status_code == http_client.OK:
            logger.debug('Found existing account at %s', response.headers['Location'])
        regr = self._regr_from_response(response)
        self.net.account = regr
        return regr

    def resolve_account(self, only_return_existing: bool = False,
                        email: Optional[str] = None) -> messages.RegistrationResource:
        """Register a new account, or log into the one owned by the key.

        :param bool only_return_existing: ``True`` to only look up an
            account previously registered with the network key.
        :param str email: Optional comma separated contact addresses.

        :rtype: `.RegistrationResource`
        """
        new_reg = messages.NewRegistration.from_data(
            email=email, terms_of_service_agreed=True,
            only_return_existing=only_return_existing)
        return self.new_account(new_reg)

    def new_order(self, domains: Union[str, Sequence[str]]) -> messages.OrderResource:
        """Request a new Order object from the server.

        :param domains: Domain name, or list of domain names, to order a
            certificate for.

        :returns: The newly created order.
        :rtype: OrderResource
        """
        if isinstance(domains, str):
            domains = [domains]
        identifiers = [messages.Identifier(typ=messages.IDENTIFIER_FQDN, value=name)
                       for name in domains]
        order = messages.NewOrder(identifiers=identifiers)
        response = self._post(self.directory['newOrder'], order)
        body = messages.Order.from_json(response.json())
        return messages.OrderResource(
            body=body,
            uri=response.headers.get('Location'))

    def fetch_authorization(self, orderr: messages.OrderResource, index: int = 0
                            ) -> messages.AuthorizationResource:
        """Fetch one of the authorizations of an order.

        :param messages.OrderResource orderr: Order.
        :param int index: Position of the authorization in the order.

        :rtype: `.AuthorizationResource`
        """
        url = orderr.body.authorizations[index]
        return self._authzr_from_response(self._post_as_get(url), uri=url)

    @classmethod
    def select_challenge(cls, authzr: messages.AuthorizationResource,
                         chall_type: Type[challenges.Challenge] = challenges.DNS01
                         ) -> messages.ChallengeBody:
        """Pick the challenge of the given type out of an authorization.

        :param authzr: Authorization Resource.
        :type authzr: `.AuthorizationResource`
        :param type chall_type: Challenge class to look for.

        :raises .ChallengeNotFoundError: if the authorization does not offer it

        :rtype: `.ChallengeBody`
        """
        for challb in authzr.body.challenges or ():
            if isinstance(challb.chall, chall_type):
                return challb
        raise errors.ChallengeNotFoundError(chall_type.typ, authzr.uri)

    def poll(self, authzr: messages.AuthorizationResource
             ) -> messages.AuthorizationResource:
        """Fetch the current state of an authorization once.

        :param authzr: Authorization Resource
        :type authzr: `.AuthorizationResource`

        :returns: Updated Authorization Resource.
        :rtype: `.AuthorizationResource`

        """
        response = self._post_as_get(authzr.uri)
        return self._authzr_from_response(
            response, authzr.body.identifier, authzr.uri)

    def answer_challenge(self, challb: messages.ChallengeBody,
                         response: challenges.ChallengeResponse) -> messages.ChallengeResource:
        """Answer challenge.

        This only tells the CA that the challenge is ready to be
        validated. Validation happens asynchronously on the CA side.

        :param challb: Challenge Resource body.
        :type challb: `.ChallengeBody`

        :param response: Corresponding Challenge response
        :type response: `.challenges.ChallengeResponse`

        :returns: Challenge Resource with updated body.
        :rtype: `.ChallengeResource`

        :raises .UnexpectedUpdate:

        """
        resp = self._post(challb.uri, response)
        authzr_uri = resp.links.get('up', {}).get('url')
        challr = messages.ChallengeResource(
            authzr_uri=authzr_uri,
            body=messages.ChallengeBody.from_json(resp.json()))
        if challr.uri is not None and challr.uri != challb.uri:
            raise errors.UnexpectedUpdate(challr.uri)
        return challr

    def deactivate_authorization(self,
                                 authzr: messages.AuthorizationResource
                                 ) -> messages.AuthorizationResource:
        """Deactivate authorization.

        :param messages.AuthorizationResource authzr: The Authorization resource
            to be deactivated.

        :returns: The Authorization resource that was deactivated.
        :rtype: `.AuthorizationResource`

        """
        body = messages.UpdateAuthorization(status=messages.STATUS_DEACTIVATED)
        response = self._post(authzr.uri, body)
        return self._authzr_from_response(response,
            authzr.body.identifier, authzr.uri)

    def finalize_order(self, orderr: messages.OrderResource, csr_der: bytes
                       ) -> messages.OrderResource:
        """Ask the CA to issue the certificate of an order.

        The CA may still be processing the order when it answers, in which
        case the returned order has no ``certificate`` URL yet and
        `query_order` can be used to refresh it.

        :param messages.OrderResource orderr: order to finalize
        :param bytes csr_der: DER encoded certificate signing request

        :raises .IssuanceError: if the CA marked the order invalid

        :returns: updated order
        :rtype: messages.OrderResource
        """
        res = self._post(orderr.body.finalize, messages.CertificateRequest(csr=csr_der))
        orderr = orderr.update(body=messages.Order.from_json(res.json()))
        self._check_order(orderr)
        return orderr

    def query_order(self, orderr: messages.OrderResource) -> messages.OrderResource:
        """Fetch the current state of an order once.

        :param messages.OrderResource orderr: order to refresh

        :raises .IssuanceError: if the CA marked the order invalid

        :rtype: messages.OrderResource
        """
        response = self._post_as_get(orderr.uri)
        orderr = orderr.update(body=messages.Order.from_json(response.json()))
        self._check_order(orderr)
        return orderr

    def download_certificate(self, url: str) -> List[str]:
        """Download an issued certificate chain.

        :param str url: ``certificate`` URL of a valid order.

        :returns: PEM certificates, leaf first.
        :rtype: `list` of `str`
        """
        response = self._post_as_get(
            url, headers={'Accept': ClientNetwork.PEM_CHAIN_CONTENT_TYPE,
                          'Content-Type': ClientNetwork.JOSE_CONTENT_TYPE})
        return crypto_util.split_pem_chain(response.text)

    @classmethod
    def _check_order(cls, orderr: messages.OrderResource) -> None:
        if orderr.body.status == messages.STATUS_INVALID:
            raise errors.IssuanceError(orderr.body.error)

    def _post_as_get(self, *args: Any, **kwargs: Any) -> requests.Response:
        """
        Send GET request using the POST-as-GET protocol.
        :param args:
        :param kwargs:
        :return:
        """
        new_args = args[:1] + (None,) + args[1:]
        return self._post(*new_args, **kwargs)

    @classmethod
    def _regr_from_response(cls, response: requests.Response, uri: Optional[str] = None
                            ) -> messages.RegistrationResource:
        try:
            body = messages.Registration.from_json(response.json())
        except ValueError:
            # Accounts looked up with onlyReturnExisting may come back without a body.
            body = messages.Registration()
        return messages.RegistrationResource(
            body=body,
            uri=response.headers.get('Location', uri))

    def _post(self, *args: Any, **kwargs: Any) -> requests.Response:
        """Wrapper around self.net.post that adds the newNonce URL.

        This is used to fetch a nonce when none is held.

        """
        kwargs.setdefault('new_nonce_url', getattr(self.directory, 'newNonce'))
        return self.net.post(*args, **kwargs)

    def _authzr_from_response(self, response: requests.Response,
                              identifier: Optional[messages.Identifier] = None,
                              uri: Optional[str] = None) -> messages.AuthorizationResource:
        authzr = messages.AuthorizationResource(
            body=messages.Authorization.from_json(response.json()),
            uri=response.headers.get('Location', uri))
        if identifier is not None and authzr.body.identifier != identifier:  # pylint: disable=no-member
            raise errors.UnexpectedUpdate(authzr)
        return authzr


class ClientNetwork:
    """Wrapper around requests that signs POSTs for authentication.

    Also adds user agent, and handles Content-Type. It holds the single
    current replay nonce of the session: each signed request consumes it
    and each response replaces it.

    Consumed nonces are remembered so that a nonce offered twice is
    rejected. That set grows by one per request for the lifetime of the
    network, which suits one issuance session; use a new network for
    long-running processes.
    """
    JSON_CONTENT_TYPE = 'application/json'
    JOSE_CONTENT_TYPE = 'application/jose+json'
    JSON_ERROR_CONTENT_TYPE = 'application/problem+json'
    PEM_CHAIN_CONTENT_TYPE = 'application/pem-certificate-chain'
    REPLAY_NONCE_HEADER = 'Replay-Nonce'

    def __init__(self, key: jose.JWK, account: Optional[messages.RegistrationResource] = None,
                 alg: jose.JWASignature = jose.ES256, verify_ssl: bool = True,
                 user_agent: str = 'acmedns-python', timeout: int = DEFAULT_NETWORK_TIMEOUT
                 ) -> None:
        """Set up the HTTP session.

        :param josepy.JWK key: Account private key.
        :param messages.RegistrationResource account: Account whose URL is
            sent as ``kid``. Left unset until newAccount answers, so that
            that request carries the public ``jwk`` instead.
        :param josepy.JWASignature alg: JWS signature algorithm.
        :param bool verify_ssl: Verify the TLS certificate of the CA.
        :param str user_agent: ``User-Agent`` header value.
        :param int timeout: Per-request timeout in seconds.
        """
        self.key = key
        self.account = account
        self.alg = alg
        self.verify_ssl = verify_ssl
        self._nonce: Optional[bytes] = None
        self._used_nonces: Set[bytes] = set()
        self.user_agent = user_agent
        self.session = requests.Session()
        self._default_timeout = timeout
        adapter = HTTPAdapter()

        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def __del__(self) -> None:
        # Try to close the session, but don't show exceptions to the
        # user if the call to close() fails.
        try:
            self.session.close()
        except Exception:  # pylint: disable=broad-except
            pass

    @property
    def nonce(self) -> Optional[bytes]:
        """Current nonce, if one is held."""
        return self._nonce

    def _wrap_in_jws(self, obj: Optional[jose.JSONDeSerializable], nonce: bytes, url: str) -> str:
        """Wrap `JSONDeSerializable` object in JWS.

        :param josepy.JSONDeSerializable obj: Request body, or ``None``
            for POST-as-GET.
        :param str url: The URL to which this object will be POSTed
        :param bytes nonce:
        :rtype: str

        """
        jobj = obj.json_dumps(indent=2).encode() if obj is not None else b''
        logger.debug('JWS payload:\n%s', jobj)
        # newAccount must not have kid
        kid = self.account.uri if self.account is not None else None
        return jws.JWS.sign(jobj, key=self.key, alg=self.alg, nonce=nonce,
                            url=url, kid=kid).json_dumps(indent=2)

    @classmethod
    def _check_response(cls, response: requests.Response,
                        content_type: Optional[str] = None) -> requests.Response:
        """Turn error responses into exceptions.

        A mismatching ``Content-Type`` is only logged when the body parses
        as JSON anyway.

        :param str content_type: Expected ``Content-Type``. When it is JSON,
            a body that does not parse as JSON is an error.

        :raises .messages.Error: if the body is a problem document, with a
            2xx status as well as an error status
        :raises .ConflictError: on HTTP 409
        :raises .ClientError: on any other unusable response

        """
        response_ct = response.headers.get('Content-Type')
        # Strip parameters from the media-type (rfc2616#section-3.7)
        if response_ct:
            response_ct = response_ct.split(';')[0].strip()
        try:
            jobj = response.json()
        except ValueError:
            jobj = None

        if response.status_code == 409:
            raise errors.ConflictError(response.headers.get('Location', 'UNKNOWN-LOCATION'))

        if not response.ok:
            if jobj is not None:
                if response_ct != cls.JSON_ERROR_CONTENT_TYPE:
                    logger.debug(
                        'Ignoring wrong Content-Type (%r) for JSON Error',
                        response_ct)
                try:
                    raise messages.Error.from_json(jobj)
                except jose.DeserializationError as error:
                    # Couldn't deserialize JSON object
                    raise errors.ClientError((response, error))
            else:
                # response is not JSON object
                raise errors.ClientError(response)
        else:
            if messages.is_problem_document(jobj):
                logger.debug('Server returned a problem document with HTTP %d',
                             response.status_code)
                try:
                    raise messages.Error.from_json(jobj)
                except jose.DeserializationError as error:
                    raise errors.ClientError((response, error))

            if jobj is not None and response_ct != cls.JSON_CONTENT_TYPE:
                logger.debug(
                    'Ignoring wrong Content-Type (%r) for JSON decodable '
                    'response', response_ct)

            if content_type == cls.JSON_CONTENT_TYPE and jobj is None:
                raise errors.ClientError(f'Unexpected response Content-Type: {response_ct}')

        return response

    def _send_request(self, method: str, url: str, *args: Any, **kwargs: Any) -> requests.Response:
        """Send one HTTP request through the session and log the exchange.

        TLS verification, ``User-Agent`` and timeout defaults are applied
        here. Other arguments go to `requests.Session.request`.

        :param str method: HTTP method.
        :param str url: Target URL.

        :raises requests.exceptions.RequestException: in case of any problems

        :returns: HTTP Response
        :rtype: `requests.Response`


        """
        if method == "POST":
            logger.debug('Sending POST request to %s:\n%s',
                          url, kwargs['data'])
        else:
            logger.debug('Sending %s request to %s.', method, url)
        kwargs['verify'] = self.verify_ssl
        kwargs.setdefault('headers', {})
        kwargs['headers'].setdefault('User-Agent', self.user_agent)
        kwargs.setdefault('timeout', self._default_timeout)
        try:
            response = self.session.request(method, url, *args, **kwargs)
        except requests.exceptions.RequestException as e:
            # The requests library emits exceptions with a lot of extra text.
            # Connection failures are rewritten into a readable message.
            # pylint: disable=line-too-long
            err_regex = r".*host='(\S*)'.*Max retries exceeded with url\: (\/\w*).*(\[Errno \d+\])([A-Za-z ]*)"
            m = re.match(err_regex, str(e))
            if m is None:
                raise  # pragma: no cover
            host, path, _err_no, err_msg = m.groups()
            raise ValueError(f"Requesting {host}{path}:{err_msg}")

        # If an Accept header was sent in the request, the response may not be
        # UTF-8 encoded. In this case, we don't set response.encoding and log
        # the base64 response instead of raw bytes to keep binary data out of the logs.
        debug_content: Union[bytes, str]
        if "Accept" in kwargs["headers"]:
            debug_content = base64.b64encode(response.content)
        else:
            # ACME JSON is UTF-8; spare requests the charset guess.
            response.encoding = "utf-8"
            debug_content = response.text
        logger.debug('Received response:\nHTTP %d\n%s\n\n%s',
                     response.status_code,
                     "\n".join("{0}: {1}".format(k, v)
                                for k, v in response.headers.items()),
                     debug_content)
        return response

    def head(self, *args: Any, **kwargs: Any) -> requests.Response:
        """Send a HEAD request. The response is returned unchecked.

        """
        return self._send_request('HEAD', *args, **kwargs)

    def get(self, url: str, content_type: str = JSON_CONTENT_TYPE,
            **kwargs: Any) -> requests.Response:
        """Send GET request and check response."""
        return self._check_response(
            self._send_request('GET', url, **kwargs), content_type=content_type)

    def _add_nonce(self, response: requests.Response) -> bytes:
        if self.REPLAY_NONCE_HEADER in response.headers:
            nonce = response.headers[self.REPLAY_NONCE_HEADER]
            try:
                decoded_nonce = jws.Header._fields['nonce'].decode(nonce)
            except jose.DeserializationError as error:
                raise errors.BadNonce(nonce, error)
            if decoded_nonce in self._used_nonces:
                raise errors.BadNonce(nonce, 'nonce was already used in this session')
            logger.debug('Storing nonce: %s', nonce)
            self._nonce = decoded_nonce
            return decoded_nonce
        else:
            raise errors.MissingNonce(response)

    def fetch_nonce(self, new_nonce_url: str) -> bytes:
        """Request a fresh nonce from the ``newNonce`` endpoint and hold it.

        Any nonce held so far is discarded.

        :param str new_nonce_url: ``newNonce`` URL of the directory.
        :rtype: bytes

        """
        logger.debug('Requesting fresh nonce')
        response = self._check_response(self.head(new_nonce_url), content_type=None)
        return self._add_nonce(response)

    def _get_nonce(self, url: str, new_nonce_url: Optional[str]) -> bytes:
        nonce = self._nonce
        if nonce is None:
            nonce = self.fetch_nonce(url if new_nonce_url is None else new_nonce_url)
        self._nonce = None
        self._used_nonces.add(nonce)
        return nonce

    def post(self, *args: Any, **kwargs: Any) -> requests.Response:
        """POST object wrapped in `.JWS` and check response.

        If the server responded with a badNonce error, the request will
        be retried once, with the nonce that came with the error.

        """
        try:
            return self._post_once(*args, **kwargs)
        except messages.Error as error:
            if error.code == 'badNonce':
                logger.debug('Retrying request after error:\n%s', error)
                return self._post_once(*args, **kwargs)
            raise

    def _post_once(self, url: str, obj: Optional[jose.JSONDeSerializable],
                   content_type: str = JOSE_CONTENT_TYPE, **kwargs: Any) -> requests.Response:
        new_nonce_url = kwargs.pop('new_nonce_url', None)
        data = self._wrap_in_jws(obj, self._get_nonce(url, new_nonce_url), url)
        kwargs.setdefault('headers', {'Content-Type': content_type})
        response = self._send_request('POST', url, data=data, **kwargs)
        if self.REPLAY_NONCE_HEADER in response.headers:
            # Error responses carry a nonce as well, which a badNonce retry uses.
            self._add_nonce(response)
        response = self._check_response(response, content_type=content_type)
        if self.REPLAY_NONCE_HEADER not in response.headers:
            raise errors.MissingNonce(response)
        return response
