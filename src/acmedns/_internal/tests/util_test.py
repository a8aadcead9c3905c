"""Tests for acmedns.util."""
import hashlib
import json
import sys

import pytest

from acmedns._internal.tests import test_util


def test_b64url_encode():
    from acmedns.util import b64url_encode
    assert b64url_encode(b'\xfb\xff') == '-_8'
    assert b64url_encode(b'foo') == 'Zm9v'
    assert b64url_encode(b'fo') == 'Zm8'
    assert b64url_encode(b'') == ''


def test_jwk_thumbprint():
    from acmedns.util import jwk_thumbprint
    key = test_util.make_account_key()
    jobj = key.public_key().to_json()
    canonical = json.dumps({name: jobj[name] for name in ('crv', 'kty', 'x', 'y')},
                           sort_keys=True, separators=(',', ':'))

    assert jwk_thumbprint(key) == hashlib.sha256(canonical.encode()).digest()
    assert jwk_thumbprint(key) == jwk_thumbprint(key.public_key())
    assert jwk_thumbprint(key) == jwk_thumbprint(key)


def test_jwk_thumbprint_differs_per_key():
    from acmedns.util import jwk_thumbprint
    assert jwk_thumbprint(test_util.make_account_key()) != \
        jwk_thumbprint(test_util.make_account_key())


if __name__ == '__main__':
    sys.exit(pytest.main(sys.argv[1:] + [__file__]))  # pragma: no cover
