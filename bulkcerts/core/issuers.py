from __future__ import annotations

import logging
from typing import Optional, Protocol

from botocore.exceptions import ClientError
from cryptography import x509

from bulkcerts.config import PLATFORM_CA_ID, BulkCertsConfig
from bulkcerts.core import crypto
from bulkcerts.errors import TerminalTaskError, UpstreamError, ValidationError

logger = logging.getLogger("bulkcerts.core.issuers")


class CertificateIssuer(Protocol):
    """
    Turns a CSR into a signed certificate.

    One instance per chunk: implementations may hold CA material fetched for
    that chunk, nothing is shared between chunks.
    """

    # Customer CA archives carry a name -> certificate id manifest
    writes_manifest: bool

    # PEM appended to leaf certificates when the request asks for the CA
    ca_certificate_pem: Optional[str]

    def issue(self, csr: x509.CertificateSigningRequest) -> x509.Certificate: ...


class PlatformCaIssuer:
    """Certificates signed by the AWS IoT managed CA (created inactive)."""

    writes_manifest = False
    ca_certificate_pem = None

    def __init__(self, iot):
        self.iot = iot

    def issue(self, csr: x509.CertificateSigningRequest) -> x509.Certificate:
        try:
            response = self.iot.create_certificate_from_csr(
                certificateSigningRequest=crypto.csr_to_pem(csr),
                setAsActive=False,
            )
        except ClientError as e:
            raise UpstreamError(f"IoT create_certificate_from_csr failed: {e}") from e
        return crypto.load_certificate(response["certificatePem"])


class CustomerCaIssuer:
    """Certificates signed locally with a customer CA registered in IoT."""

    writes_manifest = True

    def __init__(self, ca_certificate_pem: str, ca_key_pem: str, expiry_days: int):
        self.ca_certificate_pem = ca_certificate_pem
        self.expiry_days = expiry_days
        self._ca_certificate = crypto.load_certificate(ca_certificate_pem)
        self._ca_key = crypto.load_private_key(ca_key_pem)

    @classmethod
    def load(cls, ca_cert_id: str, iot, ssm, key_parameter_prefix: str, expiry_days: int) -> "CustomerCaIssuer":
        """
        Fetch the CA certificate (IoT) and its private key (SSM SecureString).

        Raises:
            UpstreamError: If either lookup fails
            TerminalTaskError: If the stored PEM material cannot be parsed
        """
        try:
            described = iot.describe_ca_certificate(certificateId=ca_cert_id)
            ca_pem = described["certificateDescription"]["certificatePem"]
        except ClientError as e:
            raise UpstreamError(f"IoT describe_ca_certificate({ca_cert_id}) failed: {e}") from e

        parameter_name = f"{key_parameter_prefix}{ca_cert_id}"
        try:
            parameter = ssm.get_parameter(Name=parameter_name, WithDecryption=True)
            ca_key_pem = parameter["Parameter"]["Value"]
        except ClientError as e:
            raise UpstreamError(f"SSM get_parameter({parameter_name}) failed: {e}") from e

        try:
            return cls(ca_pem, ca_key_pem, expiry_days)
        except ValidationError as e:
            raise TerminalTaskError(f"Unusable CA material for {ca_cert_id}: {e}") from e

    def issue(self, csr: x509.CertificateSigningRequest) -> x509.Certificate:
        return crypto.sign_csr(csr, self._ca_certificate, self._ca_key, self.expiry_days)


def resolve_issuer(ca_alias: str, cfg: BulkCertsConfig, iot, ssm) -> CertificateIssuer:
    """
    Select the issuing strategy for a CA alias.

    Raises:
        TerminalTaskError: If the alias is not configured
    """
    ca_cert_id = cfg.ca_cert_id(ca_alias)
    if not ca_cert_id:
        raise TerminalTaskError(f"Unknown CA alias '{ca_alias}'")

    if ca_cert_id == PLATFORM_CA_ID:
        logger.debug(f"CA alias '{ca_alias}' uses the platform CA")
        return PlatformCaIssuer(iot)

    logger.debug(f"CA alias '{ca_alias}' uses customer CA {ca_cert_id}")
    return CustomerCaIssuer.load(
        ca_cert_id,
        iot,
        ssm,
        key_parameter_prefix=cfg.ca_key_parameter_prefix,
        expiry_days=cfg.certificate_expiry_days,
    )
