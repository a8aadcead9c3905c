"""Tests for acmedns.messages."""
import datetime
import sys
from typing import Dict
import unittest

import josepy as jose
import pytest

from acmedns import challenges
from acmedns._internal.tests import test_util

KEY = test_util.make_account_key()

DIRECTORY = {
    'newNonce': 'https://ca.example/acme/new-nonce',
    'newAccount': 'https://ca.example/acme/new-acct',
    'newOrder': 'https://ca.example/acme/new-order',
}


class ErrorTest(unittest.TestCase):
    """Tests for acmedns.messages.Error."""

    def setUp(self):
        from acmedns.messages import Error, Identifier, IDENTIFIER_FQDN
        self.error = Error.with_code('malformed', detail='foo', title='title')
        self.error_custom = Error(typ='custom', detail='bar')
        self.identifier = Identifier(typ=IDENTIFIER_FQDN, value='example.com')
        self.subproblem = Error.with_code('caa', detail='bar', title='title',
                                          identifier=self.identifier)
        self.error_with_subproblems = Error.with_code(
            'malformed', detail='foo', title='title', subproblems=[self.subproblem])

    def test_default_typ(self):
        from acmedns.messages import Error
        assert Error().typ == 'about:blank'

    def test_from_json_empty(self):
        from acmedns.messages import Error
        assert Error() == Error.from_json({})

    def test_from_json_hashable(self):
        from acmedns.messages import Error
        hash(Error.from_json(self.error.to_json()))

    def test_from_json_problem_document(self):
        from acmedns.messages import Error
        error = Error.from_json({
            'type': 'urn:ietf:params:acme:error:malformed',
            'detail': 'Terms of service must be agreed',
            'status': 400,
            'instance': 'https://ca.example/docs',
        })
        assert error.status == 400
        assert error.detail == 'Terms of service must be agreed'
        assert error.code == 'malformed'

    def test_from_json_with_subproblems(self):
        from acmedns.messages import Error
        parsed_error = Error.from_json(self.error_with_subproblems.to_json())

        assert 1 == len(parsed_error.subproblems)
        assert self.subproblem == parsed_error.subproblems[0]

    def test_description(self):
        assert 'The request was malformed' == self.error.description
        assert self.error_custom.description is None

    def test_code(self):
        from acmedns.messages import Error
        assert 'malformed' == self.error.code
        assert self.error_custom.code is None
        assert Error().code is None

    def test_with_code(self):
        from acmedns.messages import Error
        assert Error.with_code('badCSR').code == 'badCSR'
        with pytest.raises(ValueError):
            Error.with_code('not an ACME error code')

    def test_str(self):
        assert str(self.error) == \
            "{0.typ} :: {0.description} :: {0.detail} :: {0.title}".format(self.error)
        assert str(self.error_with_subproblems) == (
            "{0.typ} :: {0.description} :: {0.detail} :: {0.title}\n"
            "Problem for {1.identifier.value}: {1.typ} :: {1.description} :: "
            "{1.detail} :: {1.title}").format(self.error_with_subproblems, self.subproblem)

    def test_raise(self):
        from acmedns import errors
        with pytest.raises(errors.AcmeProtocolError) as caught:
            raise self.error
        assert caught.value.detail == 'foo'


@pytest.mark.parametrize('jobj,expected', [
    ({'type': 'about:blank', 'status': 403}, True),
    ({'status': 400, 'detail': 'Bad request'}, True),
    ({'status': 400.0, 'detail': 'Bad request'}, True),
    ({'status': 399}, False),
    ({'status': 399.5}, False),
    ({'status': 'pending'}, False),
    ({'status': True}, False),
    ({}, False),
    (None, False),
    ([{'status': 500}], False),
])
def test_is_problem_document(jobj, expected):
    from acmedns.messages import is_problem_document
    assert is_problem_document(jobj) is expected


class ConstantTest(unittest.TestCase):
    """Tests for acmedns.messages._Constant."""

    def setUp(self):
        from acmedns.messages import _Constant

        class MockConstant(_Constant):  # pylint: disable=missing-docstring
            POSSIBLE_NAMES: Dict = {}

        self.MockConstant = MockConstant  # pylint: disable=invalid-name
        self.const_a = MockConstant('a')
        self.const_b = MockConstant('b')

    def test_to_partial_json(self):
        assert 'a' == self.const_a.to_partial_json()

    def test_from_json(self):
        assert self.const_a == self.MockConstant.from_json('a')
        with pytest.raises(jose.DeserializationError):
            self.MockConstant.from_json('c')

    def test_repr(self):
        assert 'MockConstant(a)' == repr(self.const_a)

    def test_equality(self):
        assert self.const_a != self.const_b
        assert self.const_a == self.MockConstant('a')


class DirectoryTest(unittest.TestCase):
    """Tests for acmedns.messages.Directory."""

    def setUp(self):
        from acmedns.messages import Directory
        self.dir = Directory.from_json(dict(DIRECTORY, meta={
            'termsOfService': 'https://example.com/acme/terms',
            'website': 'https://www.example.com/',
            'caaIdentities': ['example.com'],
        }))

    def test_getitem(self):
        assert DIRECTORY['newOrder'] == self.dir['newOrder']

    def test_getitem_fails_with_key_error(self):
        with pytest.raises(KeyError):
            self.dir['keyChange']  # pylint: disable=pointless-statement

    def test_getattr(self):
        assert DIRECTORY['newNonce'] == self.dir.newNonce

    def test_getattr_fails_with_attribute_error(self):
        with pytest.raises(AttributeError):
            self.dir.foo  # pylint: disable=pointless-statement

    def test_meta(self):
        assert self.dir.meta.terms_of_service == 'https://example.com/acme/terms'
        assert list(self.dir.meta.caa_identities) == ['example.com']
        assert 'terms_of_service' in list(self.dir.meta)

    def test_to_json(self):
        jobj = self.dir.to_json()
        assert list(jobj['meta'].pop('caaIdentities')) == ['example.com']
        assert jobj == dict(DIRECTORY, meta={
            'termsOfService': 'https://example.com/acme/terms',
            'website': 'https://www.example.com/',
        })

    def test_from_json_without_meta(self):
        from acmedns.messages import Directory
        assert Directory.from_json(DIRECTORY).meta.terms_of_service is None

    def test_from_json_unknown_key(self):
        from acmedns.messages import Directory
        assert Directory.from_json(dict(DIRECTORY, foo='bar'))['foo'] == 'bar'

    def test_from_json_missing_endpoint(self):
        from acmedns.messages import Directory
        for name in Directory.REQUIRED:
            jobj = dict(DIRECTORY)
            del jobj[name]
            with pytest.raises(jose.DeserializationError, match=name):
                Directory.from_json(jobj)

    def test_from_json_endpoint_not_a_string(self):
        from acmedns.messages import Directory
        with pytest.raises(jose.DeserializationError):
            Directory.from_json(dict(DIRECTORY, newOrder=42))

    def test_from_json_meta_not_an_object(self):
        from acmedns.messages import Directory
        for meta in (None, 'https://example.com/acme/terms', ['example.com']):
            with pytest.raises(jose.DeserializationError, match='meta'):
                Directory.from_json(dict(DIRECTORY, meta=meta))

    def test_from_json_not_an_object(self):
        from acmedns.messages import Directory
        with pytest.raises(jose.DeserializationError):
            Directory.from_json(['newNonce'])


class RegistrationTest(unittest.TestCase):
    """Tests for acmedns.messages.Registration."""

    def test_from_data(self):
        from acmedns.messages import Registration
        reg = Registration.from_data(email='admin@example.com,ops@example.com')
        assert reg.contact == ('mailto:admin@example.com', 'mailto:ops@example.com')
        assert reg.emails == ('admin@example.com', 'ops@example.com')

    def test_from_data_without_email(self):
        from acmedns.messages import Registration
        assert Registration.from_data().to_json() == {}

    def test_new_registration_to_json(self):
        from acmedns.messages import NewRegistration
        assert NewRegistration.from_data(terms_of_service_agreed=True).to_json() == {
            'termsOfServiceAgreed': True,
            'onlyReturnExisting': False,
        }
        assert NewRegistration(only_return_existing=True).to_json() == {
            'onlyReturnExisting': True,
        }

    def test_from_json(self):
        from acmedns.messages import Registration, STATUS_VALID
        reg = Registration.from_json({
            'status': 'valid',
            'contact': ['mailto:admin@example.com'],
            'key': KEY.public_key().to_json(),
        })
        assert reg.status == STATUS_VALID
        assert reg.key == KEY.public_key()


class ChallengeBodyTest(unittest.TestCase):
    """Tests for acmedns.messages.ChallengeBody."""

    def setUp(self):
        from acmedns.messages import ChallengeBody, Error, STATUS_INVALID
        self.chall = challenges.DNS01(token=jose.b64decode(test_util.TOKEN))
        self.error = Error.with_code('unauthorized', detail='Incorrect TXT record')
        self.challb = ChallengeBody(
            uri='https://ca.example/acme/chall/1', chall=self.chall,
            status=STATUS_INVALID, error=self.error)
        self.jobj = {
            'url': 'https://ca.example/acme/chall/1',
            'type': 'dns-01',
            'status': 'invalid',
            'token': test_util.TOKEN,
            'error': {
                'type': 'urn:ietf:params:acme:error:unauthorized',
                'detail': 'Incorrect TXT record',
            },
        }

    def test_encode(self):
        assert self.challb.encode('uri') == self.challb.uri

    def test_to_json(self):
        assert self.jobj == self.challb.to_json()

    def test_from_json(self):
        from acmedns.messages import ChallengeBody
        assert self.challb == ChallengeBody.from_json(self.jobj)

    def test_proxy(self):
        assert jose.b64decode(test_util.TOKEN) == self.challb.token

    def test_iter(self):
        assert 'uri' in list(self.challb)

    def test_from_json_validated(self):
        from acmedns.messages import ChallengeBody
        challb = ChallengeBody.from_json(dict(
            self.jobj, status='valid', validated='2024-01-02T03:04:05Z'))
        assert challb.validated == datetime.datetime(
            2024, 1, 2, 3, 4, 5, tzinfo=datetime.timezone.utc)


class AuthorizationTest(unittest.TestCase):
    """Tests for acmedns.messages.Authorization."""

    def setUp(self):
        self.jobj = {
            'identifier': {'type': 'dns', 'value': 'example.com'},
            'status': 'pending',
            'expires': '2030-01-01T00:00:00Z',
            'challenges': [
                {'type': 'http-01', 'url': 'https://ca.example/acme/chall/1',
                 'token': test_util.TOKEN},
                {'type': 'dns-01', 'url': 'https://ca.example/acme/chall/2',
                 'token': test_util.TOKEN},
            ],
        }

    def test_from_json(self):
        from acmedns.messages import Authorization, IDENTIFIER_FQDN, STATUS_PENDING
        authz = Authorization.from_json(self.jobj)
        assert authz.identifier.typ == IDENTIFIER_FQDN
        assert authz.identifier.value == 'example.com'
        assert authz.status == STATUS_PENDING
        assert isinstance(authz.challenges[0].chall, challenges.UnrecognizedChallenge)
        assert isinstance(authz.challenges[1].chall, challenges.DNS01)
        assert authz.challenges[1].uri == 'https://ca.example/acme/chall/2'


class OrderTest(unittest.TestCase):
    """Tests for acmedns.messages.Order."""

    def test_from_json(self):
        from acmedns.messages import Order, STATUS_VALID
        order = Order.from_json({
            'status': 'valid',
            'identifiers': [{'type': 'dns', 'value': 'example.com'}],
            'authorizations': ['https://ca.example/acme/authz/1'],
            'finalize': 'https://ca.example/acme/order/1/finalize',
            'certificate': 'https://ca.example/acme/cert/1',
        })
        assert order.status == STATUS_VALID
        assert order.identifiers[0].value == 'example.com'
        assert order.certificate == 'https://ca.example/acme/cert/1'

    def test_new_order_to_json(self):
        from acmedns.messages import Identifier, IDENTIFIER_FQDN, NewOrder
        order = NewOrder(identifiers=(Identifier(typ=IDENTIFIER_FQDN, value='example.com'),))
        assert order.json_dumps(sort_keys=True) == \
            '{"identifiers": [{"type": "dns", "value": "example.com"}]}'

    def test_invalid_order_error(self):
        from acmedns.messages import Order, STATUS_INVALID
        order = Order.from_json({
            'status': 'invalid',
            'error': {'type': 'urn:ietf:params:acme:error:badCSR', 'status': 400},
        })
        assert order.status == STATUS_INVALID
        assert order.error.code == 'badCSR'


class CertificateRequestTest(unittest.TestCase):
    """Tests for acmedns.messages.CertificateRequest."""

    def test_to_partial_json(self):
        from acmedns.messages import CertificateRequest
        assert CertificateRequest(csr=b'\xfb\xff').to_partial_json() == {'csr': '-_8'}

    def test_from_json(self):
        from acmedns.messages import CertificateRequest
        assert CertificateRequest.from_json({'csr': '-_8'}).csr == b'\xfb\xff'


if __name__ == '__main__':
    sys.exit(pytest.main(sys.argv[1:] + [__file__]))  # pragma: no cover
