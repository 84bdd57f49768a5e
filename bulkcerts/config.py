from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional
from urllib.parse import quote_plus

from bulkcerts.errors import ValidationError

ENV_PREFIX = "BULKCERTS_"

# CA alias value meaning "let AWS IoT sign the CSR"
PLATFORM_CA_ID = "AwsIotDefault"

# env suffix -> CertificateInfo field
CERT_INFO_ENV = {
    "CERT_COMMON_NAME": "common_name",
    "CERT_ORGANIZATION": "organization",
    "CERT_ORGANIZATIONAL_UNIT": "organizational_unit",
    "CERT_LOCALITY": "locality",
    "CERT_STATE_NAME": "state_name",
    "CERT_COUNTRY": "country",
    "CERT_EMAIL_ADDRESS": "email_address",
    "CERT_DISTINGUISHED_NAME_QUALIFIER": "distinguished_name_qualifier",
    "CERT_SERIAL_NUMBER": "serial_number",
}


@dataclass(frozen=True)
class BulkCertsConfig:
    db_dsn: str
    aws_region: str

    queue_url: Optional[str] = None
    s3_bucket: Optional[str] = None
    s3_prefix: str = "certificates/"  # keys are {prefix}{task_id}/{chunk_id}/certs.zip

    chunk_size: int = 50
    certificate_expiry_days: int = 365
    key_size: int = 2048
    supplier_root_cas: Dict[str, str] = field(default_factory=dict)  # alias -> CA certificate id
    ca_key_parameter_prefix: str = "bulkcerts-ca-key-"
    presigned_url_expiry_seconds: int = 3600
    cert_info_defaults: Dict[str, str] = field(default_factory=dict)

    poll_wait_seconds: int = 20
    visibility_timeout_seconds: int = 300  # a 50 cert chunk with local signing fits well inside
    # Visibility applied to a message after a retryable failure; None keeps the current timeout
    retry_delay_seconds: Optional[int] = 30

    # Shutdown behavior:
    # > 0: Exit after N empty polls - for batch runs
    # <= 0: Run indefinitely (daemon mode) - for systemd services
    shutdown_after_empty_polls: int = 0

    def __post_init__(self) -> None:
        if self.chunk_size <= 0:
            raise ValidationError(f"chunk_size must be > 0, got {self.chunk_size}")

    def ca_cert_id(self, ca_alias: str) -> Optional[str]:
        return self.supplier_root_cas.get(ca_alias)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "BulkCertsConfig":
        """
        Build configuration from BULKCERTS_* environment variables.

        Keyword overrides win over the environment (used by CLI options).
        """
        env = os.environ if environ is None else environ

        def get(name: str, default: Optional[str] = None) -> Optional[str]:
            return env.get(ENV_PREFIX + name, default)

        raw_cas = get("SUPPLIER_ROOT_CAS", "{}")
        try:
            supplier_root_cas = json.loads(raw_cas)
        except json.JSONDecodeError as e:
            raise ValidationError(f"{ENV_PREFIX}SUPPLIER_ROOT_CAS is not valid JSON: {e}") from e
        if not isinstance(supplier_root_cas, dict):
            raise ValidationError(f"{ENV_PREFIX}SUPPLIER_ROOT_CAS must be a JSON object")

        cert_info_defaults = {}
        for suffix, attr in CERT_INFO_ENV.items():
            value = get(suffix)
            if value:
                cert_info_defaults[attr] = value

        kwargs = dict(
            db_dsn=build_dsn_from_env(env),
            aws_region=get("REGION", "us-east-1"),
            queue_url=get("QUEUE_URL"),
            s3_bucket=get("S3_BUCKET"),
            s3_prefix=get("S3_PREFIX", "certificates/"),
            chunk_size=_int(get("CHUNK_SIZE", "50"), "CHUNK_SIZE"),
            certificate_expiry_days=_int(get("CERT_EXPIRY_DAYS", "365"), "CERT_EXPIRY_DAYS"),
            key_size=_int(get("KEY_SIZE", "2048"), "KEY_SIZE"),
            supplier_root_cas={str(k): str(v) for k, v in supplier_root_cas.items()},
            ca_key_parameter_prefix=get("CA_KEY_PARAMETER_PREFIX", "bulkcerts-ca-key-"),
            presigned_url_expiry_seconds=_int(get("PRESIGNED_URL_EXPIRY", "3600"), "PRESIGNED_URL_EXPIRY"),
            cert_info_defaults=cert_info_defaults,
        )
        kwargs.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**kwargs)


def build_dsn_from_env(environ: Optional[Mapping[str, str]] = None) -> str:
    """
    Build the PostgreSQL DSN from BULKCERTS_SQL_* variables.

    Returns an empty string when no host is configured, so commands that never
    touch the database can still build a config.
    """
    env = os.environ if environ is None else environ
    sql_host = env.get(ENV_PREFIX + "SQL_HOST")
    if not sql_host:
        return ""
    sql_port = env.get(ENV_PREFIX + "SQL_PORT", "5432")
    sql_user = env.get(ENV_PREFIX + "SQL_USER", "")
    sql_password = env.get(ENV_PREFIX + "SQL_PASSWORD", "")
    sql_database = env.get(ENV_PREFIX + "SQL_DATABASE", "bulkcerts")
    sslmode = env.get(ENV_PREFIX + "SQL_SSLMODE", "prefer")

    # URL-encode password to handle special characters
    encoded_password = quote_plus(sql_password)
    return f"postgresql://{sql_user}:{encoded_password}@{sql_host}:{sql_port}/{sql_database}?sslmode={sslmode}"


def _int(value: Optional[str], name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{ENV_PREFIX}{name} must be an integer, got {value!r}") from e
