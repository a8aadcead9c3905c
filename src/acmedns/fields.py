"""JSON fields shared by ACME messages."""
import datetime
from typing import Any

import josepy as jose
import pyrfc3339


class RFC3339Field(jose.Field):
    """Timestamp field (``expires``, ``validated``).

    Decodes to timezone-aware `datetime.datetime` objects. Naive datetimes
    cannot be encoded.

    """

    @classmethod
    def default_encoder(cls, value: datetime.datetime) -> str:
        return pyrfc3339.generate(value)

    @classmethod
    def default_decoder(cls, value: str) -> datetime.datetime:
        try:
            return pyrfc3339.parse(value)
        except ValueError as error:
            raise jose.DeserializationError(f'Invalid RFC 3339 timestamp {value!r}: {error}')


def rfc3339(json_name: str, omitempty: bool = False) -> Any:
    """Declare an `RFC3339Field` named ``json_name`` in JSON."""
    return RFC3339Field(json_name, omitempty=omitempty)
