from __future__ import annotations
import json
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Dict, List, Optional

from bulkcerts.errors import ValidationError


class TaskStatus:
    PENDING = "pending"
    COMPLETE = "complete"
    IN_PROGRESS = "in_progress"  # only ever returned to the caller of create_task


class CommonNameGenerator:
    STATIC = "static"
    INCREMENT = "increment"
    LIST = "list"

    ALL = (STATIC, INCREMENT, LIST)


# CertificateInfo attribute -> JSON key of the work message
_CERT_INFO_JSON = {
    "common_name": "commonName",
    "organization": "organization",
    "organizational_unit": "organizationalUnit",
    "locality": "locality",
    "state_name": "stateName",
    "country": "country",
    "email_address": "emailAddress",
    "distinguished_name_qualifier": "distinguishedNameQualifier",
    "serial_number": "serialNumber",
    "common_name_generator": "commonNameGenerator",
    "common_name_start": "commonNameStart",
    "common_name_list": "commonNameList",
}


@dataclass(frozen=True)
class CertificateInfo:
    """
    Subject template applied to every certificate of a task.

    With a generator other than static, common_name is the literal prefix
    placed in front of the generated part.
    """
    common_name: str = ""
    organization: str = ""
    organizational_unit: str = ""
    locality: str = ""
    state_name: str = ""
    country: str = ""
    email_address: str = ""
    distinguished_name_qualifier: str = ""
    serial_number: str = ""
    common_name_generator: str = CommonNameGenerator.STATIC
    common_name_start: Optional[str] = None  # hex, increment mode
    common_name_list: Optional[List[str]] = None

    def to_dict(self) -> Dict[str, Any]:
        out = {}
        for attr, key in _CERT_INFO_JSON.items():
            value = getattr(self, attr)
            if value is None:
                continue
            out[key] = list(value) if isinstance(value, (list, tuple)) else value
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CertificateInfo":
        if not isinstance(data, dict):
            raise ValidationError("certInfo must be an object")
        kwargs = {}
        for attr, key in _CERT_INFO_JSON.items():
            if key in data and data[key] is not None:
                kwargs[attr] = data[key]
        if "common_name_list" in kwargs:
            kwargs["common_name_list"] = [str(n) for n in kwargs["common_name_list"]]
        return cls(**kwargs)

    def with_overrides(self, **overrides: Any) -> "CertificateInfo":
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


@dataclass(frozen=True)
class ChunkRequest:
    """Work message: everything a worker needs to produce one chunk."""
    task_id: str
    chunk_id: int
    quantity: int
    ca_alias: str
    cert_info: CertificateInfo
    include_ca: bool = False

    def to_json(self) -> str:
        return json.dumps({
            "taskId": self.task_id,
            "chunkId": self.chunk_id,
            "quantity": self.quantity,
            "caAlias": self.ca_alias,
            "certInfo": self.cert_info.to_dict(),
            "includeCa": self.include_ca,
        })

    @classmethod
    def from_json(cls, body: str) -> "ChunkRequest":
        """
        Parse a work message body.

        Raises:
            ValidationError: If the body is not JSON or a field is missing/invalid
        """
        try:
            data = json.loads(body)
        except (json.JSONDecodeError, TypeError) as e:
            raise ValidationError(f"Work message is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ValidationError("Work message must be a JSON object")

        try:
            task_id = str(data["taskId"])
            chunk_id = int(data["chunkId"])
            quantity = int(data["quantity"])
            ca_alias = str(data["caAlias"])
            cert_info = CertificateInfo.from_dict(data.get("certInfo") or {})
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Malformed work message: {e!r}") from e

        if not task_id:
            raise ValidationError("Work message has an empty taskId")
        if chunk_id <= 0:
            raise ValidationError(f"Work message chunkId must be > 0, got {chunk_id}")
        if quantity <= 0:
            raise ValidationError(f"Work message quantity must be > 0, got {quantity}")
        if not ca_alias:
            raise ValidationError("Work message has an empty caAlias")

        return cls(
            task_id=task_id,
            chunk_id=chunk_id,
            quantity=quantity,
            ca_alias=ca_alias,
            cert_info=cert_info,
            include_ca=bool(data.get("includeCa", False)),
        )


@dataclass(frozen=True)
class ChunkRecord:
    task_id: str
    chunk_id: int
    quantity: int
    status: str
    batch_date: int            # epoch ms, shared by all chunks of a task
    location: Optional[str] = None
    request_body: Optional[str] = None  # work message JSON, kept for replay


@dataclass(frozen=True)
class TaskSummary:
    task_id: str
    batch_date: int
    status: str
    chunks_pending: int
    chunks_total: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "taskId": self.task_id,
            "batchDate": self.batch_date,
            "status": self.status,
            "chunksPending": self.chunks_pending,
            "chunksTotal": self.chunks_total,
        }


@dataclass(frozen=True)
class ArtifactLocation:
    bucket: str
    key: str

    @property
    def uri(self) -> str:
        return f"s3://{self.bucket}/{self.key}"

    @classmethod
    def parse(cls, uri: str) -> "ArtifactLocation":
        """Split an s3://bucket/key location as stored on chunk records."""
        if not uri or not uri.startswith("s3://"):
            raise ValidationError(f"Not an s3:// location: {uri!r}")
        bucket, _, key = uri[len("s3://"):].partition("/")
        if not bucket or not key:
            raise ValidationError(f"Incomplete s3:// location: {uri!r}")
        return cls(bucket=bucket, key=key)


@dataclass(frozen=True)
class SqsChunkMessage:
    message_id: str
    receipt_handle: str
    body: str


@dataclass
class ChunkResult:
    task_id: str
    chunk_id: int
    location: str
    certificate_ids: List[str] = field(default_factory=list)
    total_duration_ms: float = 0.0

    def as_log_extra(self) -> Dict[str, Any]:
        extra = asdict(self)
        extra["nb_certificates"] = len(extra.pop("certificate_ids"))
        return extra
