"""Shared fixtures: in-memory stand-ins for the record store, S3 and SQS, and a throwaway CA."""

from __future__ import annotations

import datetime
from dataclasses import replace
from typing import Dict, List, Optional, Tuple
from unittest.mock import MagicMock

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.x509.oid import NameOID

from bulkcerts.config import PLATFORM_CA_ID, BulkCertsConfig
from bulkcerts.core import crypto
from bulkcerts.core.models import ArtifactLocation, ChunkRecord, ChunkRequest, SqsChunkMessage, TaskStatus

CUSTOMER_CA_ID = "3d2ecfdb0eba2898626291e7e18a37ce"


class FakeRecordStore:
    """Dict-backed ChunkRecordStore."""

    def __init__(self):
        self.records: Dict[Tuple[str, int], ChunkRecord] = {}
        self.closed = False

    def save_chunk(self, record: ChunkRecord) -> None:
        self.records[(record.task_id, record.chunk_id)] = record

    def mark_chunk_complete(self, task_id: str, chunk_id: int, location: str) -> bool:
        key = (task_id, chunk_id)
        if key not in self.records:
            return False
        self.records[key] = replace(self.records[key], status=TaskStatus.COMPLETE, location=location)
        return True

    def list_chunks(self, task_id: str) -> List[ChunkRecord]:
        return sorted((r for r in self.records.values() if r.task_id == task_id), key=lambda r: r.chunk_id)

    def close(self) -> None:
        self.closed = True


class FakeArtifactStore:
    """Dict-backed ArtifactStore keyed by (bucket, key)."""

    def __init__(self):
        self.objects: Dict[Tuple[str, str], bytes] = {}

    def put_bytes(self, location: ArtifactLocation, data: bytes, content_type: str = "application/zip") -> None:
        self.objects[(location.bucket, location.key)] = data

    def get_bytes(self, location: ArtifactLocation) -> Optional[bytes]:
        return self.objects.get((location.bucket, location.key))

    def presign_get(self, location: ArtifactLocation, expires_in: int) -> str:
        return f"https://{location.bucket}.s3.amazonaws.com/{location.key}?X-Amz-Expires={expires_in}"

    def list_keys(self, bucket: str, prefix: str) -> List[str]:
        return sorted(k for b, k in self.objects if b == bucket and k.startswith(prefix))

    def delete_keys(self, bucket: str, keys: List[str]) -> int:
        for key in keys:
            del self.objects[(bucket, key)]
        return len(keys)


class FakeQueue:
    """Records what would have been sent to SQS."""

    def __init__(self):
        self.sent: List[Tuple[str, ChunkRequest]] = []
        self.pending: List[SqsChunkMessage] = []
        self.deleted: List[str] = []
        self.visibility_changes: List[Tuple[str, int]] = []

    def send_chunk_request(self, queue_url: str, request: ChunkRequest) -> str:
        self.sent.append((queue_url, request))
        return f"msg-{len(self.sent)}"

    def receive_one(self, queue_url: str, wait_seconds: int, visibility_timeout: int) -> Optional[SqsChunkMessage]:
        return self.pending.pop(0) if self.pending else None

    def delete(self, queue_url: str, receipt_handle: str) -> None:
        self.deleted.append(receipt_handle)

    def change_visibility(self, queue_url: str, receipt_handle: str, timeout_seconds: int) -> None:
        self.visibility_changes.append((receipt_handle, timeout_seconds))


def make_ca(common_name: str):
    """Self-signed CA certificate and its key."""
    key = crypto.generate_private_key(2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + datetime.timedelta(days=30))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )
    return cert, key


@pytest.fixture
def cfg():
    return BulkCertsConfig(
        db_dsn="",
        aws_region="us-east-1",
        queue_url="https://sqs.us-east-1.amazonaws.com/123456789012/bulkcerts-chunks",
        s3_bucket="unit-test-bucket",
        s3_prefix="certs/",
        chunk_size=50,
        certificate_expiry_days=365,
        supplier_root_cas={"customer": CUSTOMER_CA_ID, "platform": PLATFORM_CA_ID},
        ca_key_parameter_prefix="bulkcerts-ca-key-",
        presigned_url_expiry_seconds=900,
    )


@pytest.fixture
def record_store():
    return FakeRecordStore()


@pytest.fixture
def artifact_store():
    return FakeArtifactStore()


@pytest.fixture
def queue():
    return FakeQueue()


@pytest.fixture(scope="session")
def customer_ca():
    return make_ca("Unit Test Customer CA")


@pytest.fixture(scope="session")
def platform_ca():
    return make_ca("Unit Test Platform CA")


@pytest.fixture
def ssm(customer_ca):
    _, ca_key = customer_ca
    client = MagicMock()
    client.get_parameter.return_value = {
        "Parameter": {
            "Name": f"bulkcerts-ca-key-{CUSTOMER_CA_ID}",
            "Type": "SecureString",
            "Value": crypto.private_key_to_pem(ca_key),
        }
    }
    return client


@pytest.fixture
def iot(customer_ca, platform_ca):
    """IoT client: describes the customer CA and signs CSRs with the platform CA."""
    ca_cert, _ = customer_ca
    platform_cert, platform_key = platform_ca

    def create_certificate_from_csr(certificateSigningRequest, setAsActive):
        csr = x509.load_pem_x509_csr(certificateSigningRequest.encode("ascii"))
        cert = crypto.sign_csr(csr, platform_cert, platform_key, days=30)
        return {
            "certificateArn": "arn:aws:iot:us-east-1:123456789012:cert/" + crypto.fingerprint(cert),
            "certificateId": crypto.fingerprint(cert),
            "certificatePem": crypto.certificate_to_pem(cert),
        }

    client = MagicMock()
    client.describe_ca_certificate.return_value = {
        "certificateDescription": {
            "certificateId": CUSTOMER_CA_ID,
            "status": "ACTIVE",
            "certificatePem": crypto.certificate_to_pem(ca_cert),
        }
    }
    client.create_certificate_from_csr.side_effect = create_certificate_from_csr
    return client
