"""Crypto utilities."""
import logging
import re
from typing import List
from typing import NamedTuple
from typing import Sequence

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.serialization import Encoding
import josepy as jose

from acmedns import errors
from acmedns import util

logger = logging.getLogger(__name__)

DEFAULT_KEY_SIZE = 2048
"""Size of the RSA keys generated for certificates."""


class CSR(NamedTuple):
    """Finalize material for one order.

    :ivar bytes der: DER encoded certificate signing request.
    :ivar bytes key_pem: PEM PKCS#8 private key of the future certificate.
    """
    der: bytes
    key_pem: bytes

    @property
    def der_b64url(self) -> str:
        """CSR as sent in the ``csr`` field of a finalize request."""
        return util.b64url_encode(self.der)


CERT_PEM_REGEX = re.compile(
    b"""-----BEGIN CERTIFICATE-----\r?
.+?\r?
-----END CERTIFICATE-----\r?
""",
    re.DOTALL # DOTALL (/s) because the base64text may include newlines
)


def make_key(bits: int = DEFAULT_KEY_SIZE) -> bytes:
    """Generate PEM encoded RSA key.

    :param int bits: Number of bits, at least 2048.

    :returns: new RSA key in PEM PKCS#8 form with specified number of bits
    :rtype: bytes

    """
    if bits < 2048:
        raise ValueError(f"RSA key size must be at least 2048 bits, got {bits}")
    key = rsa.generate_private_key(public_exponent=65537, key_size=bits)
    return key.private_bytes(
        encoding=Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def make_csr(private_key_pem: bytes, domains: Sequence[str]) -> bytes:
    """Generate a CSR containing domains as subjectAltNames.

    The first domain is also used as the subject common name.

    :param buffer private_key_pem: Private key, in PEM PKCS#8 format.
    :param list domains: List of DNS names to include in subjectAltNames of CSR.

    :returns: buffer DER-encoded Certificate Signing Request.

    """
    private_key = serialization.load_pem_private_key(private_key_pem, password=None)
    if not isinstance(private_key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
        raise ValueError(f"Invalid private key type: {type(private_key)}")
    if not domains:
        raise ValueError("At least one domain is required")

    builder = (
        x509.CertificateSigningRequestBuilder()
        .subject_name(x509.Name([
            x509.NameAttribute(x509.NameOID.COMMON_NAME, domains[0]),
        ]))
        .add_extension(
            x509.SubjectAlternativeName([x509.DNSName(d) for d in domains]),
            critical=False,
        )
    )
    csr = builder.sign(private_key, hashes.SHA256())
    return csr.public_bytes(Encoding.DER)


def generate_csr(domain: str, bits: int = DEFAULT_KEY_SIZE) -> CSR:
    """Generate a fresh certificate key and a CSR for ``domain``.

    The private key is only returned to the caller; it is never sent to
    the CA.

    :param str domain: Domain name, used for both CN and SAN.
    :param int bits: RSA key size.

    :raises .KeyGenerationError: if the key or CSR cannot be produced.

    :rtype: `CSR`

    """
    try:
        key_pem = make_key(bits)
        csr_der = make_csr(key_pem, [domain])
    except ValueError as error:
        raise errors.KeyGenerationError(
            f"Unable to generate a CSR for {domain}: {error}") from error
    logger.debug("Generated %d bit RSA key and CSR for %s", bits, domain)
    return CSR(der=csr_der, key_pem=key_pem)


def make_account_key() -> jose.JWKEC:
    """Generate a new ECDSA P-256 account key.

    :raises .KeyGenerationError: if the key cannot be produced.

    :rtype: `josepy.JWKEC`

    """
    try:
        key = ec.generate_private_key(ec.SECP256R1())
    except (ValueError, TypeError) as error:
        raise errors.KeyGenerationError(
            f"Unable to generate an account key: {error}") from error
    return jose.JWKEC(key=key)


def split_pem_chain(fullchain_pem: str) -> List[str]:
    """Split a PEM certificate chain into its certificates.

    Each certificate found between PEM boundaries is parsed and re-encoded,
    which normalizes encoding variations (e.g. CRLF, whitespace).

    :param str fullchain_pem: concatenated leaf + intermediates

    :returns: PEM certificates, in the order they appear
    :rtype: `list` of `str`

    :raises errors.Error: If there is no certificate, or one cannot be parsed.

    """
    certs = CERT_PEM_REGEX.findall(fullchain_pem.encode())
    if not certs:
        raise errors.Error("failed to parse certificate chain: no certificate found")
    try:
        # Since each normalized cert has a newline suffix, they can be joined as is.
        return [x509.load_pem_x509_certificate(cert).public_bytes(Encoding.PEM).decode()
                for cert in certs]
    except ValueError as error:
        raise errors.Error(f"failed to parse certificate chain: {error}") from error
