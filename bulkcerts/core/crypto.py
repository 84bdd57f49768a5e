"""X.509 helpers: keys, CSRs, local signing and fingerprints."""
from __future__ import annotations

import datetime
from typing import List

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from bulkcerts.core.models import CertificateInfo
from bulkcerts.errors import ValidationError

# CertificateInfo attribute -> subject OID, in the order they appear in the DN
_SUBJECT_OIDS = (
    ("country", NameOID.COUNTRY_NAME),
    ("state_name", NameOID.STATE_OR_PROVINCE_NAME),
    ("locality", NameOID.LOCALITY_NAME),
    ("organization", NameOID.ORGANIZATION_NAME),
    ("organizational_unit", NameOID.ORGANIZATIONAL_UNIT_NAME),
    ("distinguished_name_qualifier", NameOID.DN_QUALIFIER),
    ("serial_number", NameOID.SERIAL_NUMBER),
    ("email_address", NameOID.EMAIL_ADDRESS),
)


def generate_private_key(key_size: int = 2048) -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=key_size)


def private_key_to_pem(key) -> str:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


def load_private_key(pem: str):
    try:
        return serialization.load_pem_private_key(pem.encode("ascii"), password=None)
    except (ValueError, TypeError) as e:
        raise ValidationError(f"Invalid PEM private key: {e}") from e


def build_subject(cert_info: CertificateInfo, common_name: str) -> x509.Name:
    """Subject DN from the template, skipping empty fields."""
    attributes: List[x509.NameAttribute] = []
    try:
        for attr, oid in _SUBJECT_OIDS:
            value = getattr(cert_info, attr)
            if value:
                attributes.append(x509.NameAttribute(oid, value))
        if common_name:
            attributes.append(x509.NameAttribute(NameOID.COMMON_NAME, common_name))
    except ValueError as e:
        raise ValidationError(f"Invalid certificate subject: {e}") from e
    return x509.Name(attributes)


def build_csr(key, subject: x509.Name) -> x509.CertificateSigningRequest:
    return x509.CertificateSigningRequestBuilder().subject_name(subject).sign(key, hashes.SHA256())


def csr_to_pem(csr: x509.CertificateSigningRequest) -> str:
    return csr.public_bytes(serialization.Encoding.PEM).decode("ascii")


def sign_csr(
    csr: x509.CertificateSigningRequest,
    ca_certificate: x509.Certificate,
    ca_key,
    days: int,
) -> x509.Certificate:
    """Issue a leaf certificate for the CSR, signed by the given CA."""
    now = datetime.datetime.now(datetime.timezone.utc)
    builder = (
        x509.CertificateBuilder()
        .subject_name(csr.subject)
        .issuer_name(ca_certificate.subject)
        .public_key(csr.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + datetime.timedelta(days=days))
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(csr.public_key()), critical=False)
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_certificate.public_key()),
            critical=False,
        )
    )
    return builder.sign(ca_key, hashes.SHA256())


def load_certificate(pem: str) -> x509.Certificate:
    try:
        return x509.load_pem_x509_certificate(pem.encode("ascii"))
    except (ValueError, TypeError) as e:
        raise ValidationError(f"Invalid PEM certificate: {e}") from e


def certificate_to_pem(certificate: x509.Certificate) -> str:
    return certificate.public_bytes(serialization.Encoding.PEM).decode("ascii")


def fingerprint(certificate: x509.Certificate) -> str:
    """SHA-256 fingerprint, lowercase hex without separators."""
    return certificate.fingerprint(hashes.SHA256()).hex()
