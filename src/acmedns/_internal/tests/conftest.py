import pytest

from acmedns._internal.tests import test_util


@pytest.fixture
def account_key():
    return test_util.make_account_key()


@pytest.fixture
def ca():
    return test_util.MockCA()
