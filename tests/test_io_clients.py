import io
import json
from unittest.mock import MagicMock

import psycopg
import pytest
from botocore.exceptions import ClientError

from bulkcerts.core.models import ArtifactLocation, CertificateInfo, ChunkRecord, ChunkRequest, TaskStatus
from bulkcerts.errors import UpstreamError, ValidationError
from bulkcerts.io.db import ChunkRecordStore, DBClient
from bulkcerts.io.s3 import ArtifactStore, chunk_location, task_prefix
from bulkcerts.io.sqs import SQSClient

LOCATION = ArtifactLocation("unit-test-bucket", "certs/t1/1/certs.zip")


def _client_error(code, operation="Operation"):
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


# ---- S3 ----

def test_get_bytes_missing_object_returns_none():
    client = MagicMock()
    client.get_object.side_effect = _client_error("NoSuchKey", "GetObject")

    assert ArtifactStore("us-east-1", client=client).get_bytes(LOCATION) is None


def test_get_bytes_reads_body():
    client = MagicMock()
    client.get_object.return_value = {"Body": io.BytesIO(b"zip-bytes")}

    assert ArtifactStore("us-east-1", client=client).get_bytes(LOCATION) == b"zip-bytes"
    client.get_object.assert_called_once_with(Bucket="unit-test-bucket", Key="certs/t1/1/certs.zip")


def test_get_bytes_other_errors_raise():
    client = MagicMock()
    client.get_object.side_effect = _client_error("AccessDenied", "GetObject")

    with pytest.raises(UpstreamError):
        ArtifactStore("us-east-1", client=client).get_bytes(LOCATION)


def test_put_bytes_failure():
    client = MagicMock()
    client.put_object.side_effect = _client_error("SlowDown", "PutObject")

    with pytest.raises(UpstreamError):
        ArtifactStore("us-east-1", client=client).put_bytes(LOCATION, b"data")


def test_list_keys_walks_pages():
    client = MagicMock()
    client.get_paginator.return_value.paginate.return_value = [
        {"Contents": [{"Key": "certs/t1/1/certs.zip"}, {"Key": "certs/t1/2/certs.zip"}]},
        {"Contents": [{"Key": "certs/t1/3/certs.zip"}]},
        {},
    ]

    keys = ArtifactStore("us-east-1", client=client).list_keys("unit-test-bucket", "certs/t1/")

    assert keys == ["certs/t1/1/certs.zip", "certs/t1/2/certs.zip", "certs/t1/3/certs.zip"]
    client.get_paginator.assert_called_once_with("list_objects_v2")


def test_delete_keys_batches_of_1000():
    client = MagicMock()
    client.delete_objects.return_value = {}
    keys = [f"certs/t1/{i}/certs.zip" for i in range(2500)]

    deleted = ArtifactStore("us-east-1", client=client).delete_keys("unit-test-bucket", keys)

    assert deleted == 2500
    sizes = [len(call.kwargs["Delete"]["Objects"]) for call in client.delete_objects.call_args_list]
    assert sizes == [1000, 1000, 500]


def test_delete_keys_reports_per_key_errors():
    client = MagicMock()
    client.delete_objects.return_value = {
        "Errors": [{"Key": "certs/t1/1/certs.zip", "Code": "AccessDenied", "Message": "Access Denied"}]
    }

    with pytest.raises(UpstreamError, match="AccessDenied"):
        ArtifactStore("us-east-1", client=client).delete_keys("unit-test-bucket", ["certs/t1/1/certs.zip"])


def test_chunk_location_layout(cfg):
    location = chunk_location(cfg, "t1", 7)

    assert location.uri == "s3://unit-test-bucket/certs/t1/7/certs.zip"
    assert task_prefix(cfg, "t1") == "certs/t1/"


# ---- SQS ----

def test_send_chunk_request_body_and_attributes():
    client = MagicMock()
    client.send_message.return_value = {"MessageId": "m-1"}
    request = ChunkRequest("t1", 2, 50, "customer", CertificateInfo(common_name="dev"))

    message_id = SQSClient("us-east-1", client=client).send_chunk_request("https://queue", request)

    assert message_id == "m-1"
    kwargs = client.send_message.call_args.kwargs
    assert json.loads(kwargs["MessageBody"])["chunkId"] == 2
    assert kwargs["MessageAttributes"]["chunkId"] == {"StringValue": "2", "DataType": "String"}


def test_receive_one_empty():
    client = MagicMock()
    client.receive_message.return_value = {}

    assert SQSClient("us-east-1", client=client).receive_one("https://queue", 0, 30) is None


def test_receive_one_returns_raw_body():
    client = MagicMock()
    client.receive_message.return_value = {
        "Messages": [{"MessageId": "m-1", "ReceiptHandle": "rh", "Body": "not json"}]
    }

    msg = SQSClient("us-east-1", client=client).receive_one("https://queue", 0, 30)

    assert (msg.message_id, msg.receipt_handle, msg.body) == ("m-1", "rh", "not json")


def test_sqs_errors_become_upstream_errors():
    client = MagicMock()
    client.delete_message.side_effect = _client_error("ReceiptHandleIsInvalid", "DeleteMessage")

    with pytest.raises(UpstreamError):
        SQSClient("us-east-1", client=client).delete("https://queue", "rh")


# ---- PostgreSQL ----

@pytest.fixture
def db():
    client = MagicMock(spec=DBClient)
    client.connect.return_value = MagicMock(closed=False)
    return client


def test_store_retries_connection_errors(db):
    db.fetch_chunks.side_effect = [psycopg.OperationalError("server closed the connection unexpectedly"), []]
    store = ChunkRecordStore(db, max_retries=3, retry_delay=0)

    assert store.list_chunks("t1") == []
    assert db.connect.call_count == 2


def test_store_gives_up_after_max_retries(db):
    db.fetch_chunks.side_effect = psycopg.OperationalError("connection refused")
    store = ChunkRecordStore(db, max_retries=2, retry_delay=0)

    with pytest.raises(UpstreamError):
        store.list_chunks("t1")
    assert db.fetch_chunks.call_count == 2


def test_store_rolls_back_other_errors(db):
    db.mark_chunk_complete.side_effect = psycopg.DataError("invalid input syntax")
    store = ChunkRecordStore(db, retry_delay=0)

    with pytest.raises(UpstreamError):
        store.mark_chunk_complete("t1", 1, LOCATION.uri)
    db.connect.return_value.rollback.assert_called_once()
    assert db.mark_chunk_complete.call_count == 1


def test_store_rolls_back_non_connection_operational_errors(db):
    db.fetch_chunks.side_effect = psycopg.errors.DeadlockDetected("deadlock detected")
    store = ChunkRecordStore(db, retry_delay=0)

    with pytest.raises(UpstreamError):
        store.list_chunks("t1")
    db.connect.return_value.rollback.assert_called_once()
    assert db.fetch_chunks.call_count == 1


def test_store_validates_records(db):
    store = ChunkRecordStore(db)

    with pytest.raises(ValidationError):
        store.save_chunk(ChunkRecord("t1", 0, 50, TaskStatus.PENDING, 1700000000000))
    with pytest.raises(ValidationError):
        store.mark_chunk_complete("t1", 1, "")
    db.connect.assert_not_called()


def test_db_client_requires_dsn():
    with pytest.raises(ValidationError):
        DBClient("").connect()
