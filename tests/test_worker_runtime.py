from dataclasses import replace
from unittest.mock import MagicMock

import pytest

from bulkcerts.core.models import CertificateInfo, ChunkRequest, SqsChunkMessage
from bulkcerts.core.worker_runtime import WorkerRuntime
from bulkcerts.errors import TerminalTaskError, UpstreamError, ValidationError


def _message(body, handle="rh-1"):
    return SqsChunkMessage(message_id=f"mid-{handle}", receipt_handle=handle, body=body)


def _body(chunk_id=1):
    return ChunkRequest(
        task_id="c0ffee00-8f22-11ee-b9d1-0242ac120002",
        chunk_id=chunk_id,
        quantity=5,
        ca_alias="customer",
        cert_info=CertificateInfo(common_name="dev"),
    ).to_json()


@pytest.fixture
def chunk_worker():
    return MagicMock()


@pytest.fixture
def runtime(cfg, queue, chunk_worker):
    return WorkerRuntime(replace(cfg, retry_delay_seconds=15), queue, chunk_worker)


def test_success_deletes_message(runtime, queue, chunk_worker):
    runtime.process_message(_message(_body()))

    request = chunk_worker.process.call_args.args[0]
    assert request.chunk_id == 1
    assert request.quantity == 5
    assert queue.deleted == ["rh-1"]
    assert queue.visibility_changes == []


@pytest.mark.parametrize(
    "body",
    ["not json", "[]", '{"taskId": "t"}', '{"taskId": "t", "chunkId": 0, "quantity": 1, "caAlias": "a"}'],
)
def test_malformed_message_is_deleted(runtime, queue, chunk_worker, body):
    with pytest.raises(TerminalTaskError):
        runtime.process_message(_message(body))

    chunk_worker.process.assert_not_called()
    assert queue.deleted == ["rh-1"]


def test_terminal_failure_deletes_message(runtime, queue, chunk_worker):
    chunk_worker.process.side_effect = TerminalTaskError("no record")

    with pytest.raises(TerminalTaskError):
        runtime.process_message(_message(_body()))

    assert queue.deleted == ["rh-1"]


def test_retryable_failure_leaves_message(runtime, queue, chunk_worker):
    chunk_worker.process.side_effect = UpstreamError("s3 down")

    with pytest.raises(UpstreamError):
        runtime.process_message(_message(_body()))

    assert queue.deleted == []
    assert queue.visibility_changes == [("rh-1", 15)]


def test_unexpected_failure_is_retryable(runtime, queue, chunk_worker):
    chunk_worker.process.side_effect = RuntimeError("boom")

    with pytest.raises(RuntimeError):
        runtime.process_message(_message(_body()))

    assert queue.deleted == []


def test_housekeeping_failure_does_not_mask_error(runtime, queue, chunk_worker):
    chunk_worker.process.side_effect = UpstreamError("s3 down")
    queue.change_visibility = MagicMock(side_effect=UpstreamError("sqs down"))

    with pytest.raises(UpstreamError, match="s3 down"):
        runtime.process_message(_message(_body()))


def test_run_forever_drains_then_stops(cfg, queue, chunk_worker):
    runtime = WorkerRuntime(replace(cfg, shutdown_after_empty_polls=2, poll_wait_seconds=0), queue, chunk_worker)
    queue.pending = [_message(_body(1), "rh-1"), _message("garbage", "rh-2"), _message(_body(3), "rh-3")]

    runtime.run_forever()

    assert chunk_worker.process.call_count == 2
    assert queue.deleted == ["rh-1", "rh-2", "rh-3"]
    assert queue.pending == []


def test_run_forever_survives_poll_errors(cfg, queue, chunk_worker):
    runtime = WorkerRuntime(replace(cfg, shutdown_after_empty_polls=3), queue, chunk_worker)
    queue.receive_one = MagicMock(side_effect=[UpstreamError("throttled"), _message(_body()), None, None, None])

    runtime.run_forever()

    chunk_worker.process.assert_called_once()
    assert queue.deleted == ["rh-1"]


def test_initialize_requires_queue(cfg, queue, chunk_worker):
    runtime = WorkerRuntime(replace(cfg, queue_url=None), queue, chunk_worker)

    with pytest.raises(ValidationError):
        runtime.initialize()


def test_shutdown_closes_store(runtime, chunk_worker):
    runtime.shutdown()

    chunk_worker.store.close.assert_called_once()
