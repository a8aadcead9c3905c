"""DNS-01 certificate issuance session.

A `Session` performs the steps every issuance needs up front (directory
discovery, first nonce and account resolution) and then exposes the two
halves of the DNS-01 flow, between which the caller publishes the TXT
record:

.. code-block:: python

   session = Session('letsencrypt-staging')
   challenge = session.request_dns_challenge('example.com')
   publish_txt_record(challenge.record_name + '.example.com',
                      challenge.record_text)
   issued = session.submit_challenge_and_finalize(challenge.order)

"""
import collections
import logging
from typing import Any
from typing import Dict
from collections.abc import Mapping
from typing import Optional
from typing import Union

import josepy as jose

from acmedns import challenges
from acmedns import client
from acmedns import crypto_util
from acmedns import messages

logger = logging.getLogger(__name__)

AUTHORITIES = {
    'letsencrypt': 'https://acme-v02.api.letsencrypt.org',
    'letsencrypt-staging': 'https://acme-staging-v02.api.letsencrypt.org',
}
"""Base URLs of the authorities that can be referred to by name."""

DNSChallenge = collections.namedtuple(
    'DNSChallenge', 'record_name record_text order')
"""TXT record to publish before finalizing ``order``.

``record_name`` is the label to prepend to the validated domain.
"""

IssuedCertificate = collections.namedtuple(
    'IssuedCertificate', 'certificate_url chain key_pem order')
"""Outcome of a finalized order.

``chain`` is the tuple of PEM certificates, leaf first. It is empty, and
``certificate_url`` is ``None``, when the CA had not issued the
certificate yet when it answered the finalize request.
``key_pem`` is the PEM PKCS#8 private key of the certificate.
"""


def directory_url(authority: str) -> str:
    """URL of the ACME directory of an authority.

    :param str authority: Name from `AUTHORITIES` (case-insensitive) or
        base URL of the CA.
    :rtype: str

    """
    base = AUTHORITIES.get(authority.lower(), authority)
    return base.rstrip('/') + '/directory'


class Session:
    """Issuance session with one CA and one account.

    :ivar josepy.JWKEC key: Account key.
    :ivar .ClientV2 client: Protocol client, for operations not covered here.
    :ivar .RegistrationResource account: Resolved account.

    """

    def __init__(self, authority: str,
                 key: Optional[Union[jose.JWKEC, Mapping[str, Any]]] = None, *,
                 email: Optional[str] = None, verify_ssl: bool = True,
                 user_agent: str = 'acmedns-python',
                 timeout: int = client.DEFAULT_NETWORK_TIMEOUT,
                 net: Optional[client.ClientNetwork] = None) -> None:
        """Discover the CA and resolve the account.

        :param str authority: Named authority or base URL of the CA.
        :param key: Account key of an existing account, as a `josepy.JWKEC`
            or its JSON form. When omitted a new key is generated and a new
            account is registered.
        :param str email: Contact addresses for a new account.
        :param net: Network to use instead of one built from ``key``. Its
            key is the account key; ``key`` then only tells whether the
            account already exists.

        :raises .DirectoryFetchError: if the directory cannot be obtained
        :raises .AcmeProtocolError: if the CA rejects the account request

        """
        existing = key is not None
        if net is None:
            if key is None:
                key = crypto_util.make_account_key()
            elif not isinstance(key, jose.JWK):
                # JWK objects are Mappings of their slots too.
                key = jose.JWK.from_json(dict(key))
            net = client.ClientNetwork(key, verify_ssl=verify_ssl,
                                       user_agent=user_agent, timeout=timeout)
        self.key = net.key

        url = directory_url(authority)
        logger.debug('Using ACME directory %s', url)
        self.client = client.ClientV2(client.ClientV2.get_directory(url, net), net)
        self.client.new_nonce()
        self.account = self.client.resolve_account(
            only_return_existing=existing, email=email)
        logger.debug('Using account %s', self.account.uri)

    @property
    def account_url(self) -> str:
        """Account URL, sent as ``kid`` in signed requests."""
        return self.account.uri

    def export_jwk(self) -> Dict[str, Any]:
        """Account key in JWK form, private part included.

        Passing the result back as ``key`` to a new `Session` logs into the
        same account.

        """
        return self.key.to_json()

    def request_dns_challenge(self, domain: str) -> DNSChallenge:
        """Open an order for ``domain`` and compute its TXT record.

        :param str domain: Domain name to issue a certificate for.

        :raises .ChallengeNotFoundError: if the CA offers no dns-01 challenge

        :rtype: `DNSChallenge`

        """
        orderr = self.client.new_order(domain)
        authzr = self.client.fetch_authorization(orderr)
        challb = self.client.select_challenge(authzr, challenges.DNS01)
        logger.debug('Order %s uses challenge %s', orderr.uri, challb.uri)
        return DNSChallenge(
            record_name=challenges.DNS01.LABEL,
            record_text=challb.chall.validation(self.key),
            order=orderr.update(authorizations=(authzr,)))

    def submit_challenge_and_finalize(self, orderr: messages.OrderResource
                                      ) -> IssuedCertificate:
        """Answer the dns-01 challenge of an order and finalize it.

        Call this once the record of `request_dns_challenge` is visible.
        The CA validates asynchronously: if the authorization is not valid
        yet when the finalize request arrives, the CA answers with an
        ``orderNotReady`` error.

        :param messages.OrderResource orderr: Order of a `DNSChallenge`.

        :raises .AcmeProtocolError: if the CA rejects a request
        :raises .IssuanceError: if the order became invalid

        :rtype: `IssuedCertificate`

        """
        authzr = self.client.fetch_authorization(orderr)
        challb = self.client.select_challenge(authzr, challenges.DNS01)
        self.client.answer_challenge(challb, challb.chall.response(self.key))

        csr = crypto_util.generate_csr(authzr.body.identifier.value)
        orderr = self.client.finalize_order(orderr, csr.der)
        key_pem = csr.key_pem.decode('ascii')

        url = orderr.body.certificate
        if url is None:
            logger.debug('Order %s is %s, no certificate yet',
                         orderr.uri, orderr.body.status)
            return IssuedCertificate(certificate_url=None, chain=(),
                                     key_pem=key_pem, order=orderr)
        chain = tuple(self.client.download_certificate(url))
        return IssuedCertificate(
            certificate_url=url, chain=chain, key_pem=key_pem,
            order=orderr.update(fullchain_pem=''.join(chain)))
