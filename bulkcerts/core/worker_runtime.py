from __future__ import annotations

import logging
import signal
from typing import Any

from bulkcerts.config import BulkCertsConfig
from bulkcerts.core.chunk_worker import ChunkWorker
from bulkcerts.core.models import ChunkRequest, SqsChunkMessage
from bulkcerts.errors import RetryableTaskError, TerminalTaskError, UpstreamError, ValidationError
from bulkcerts.io.sqs import SQSClient

# Use "bulkcerts" namespace so logs appear at INFO level (not WARNING from root)
logger = logging.getLogger("bulkcerts.core.worker_runtime")


class WorkerRuntime:
    """
    Main worker loop that consumes chunk messages.

    Flow:
    1. Initialize: check queue config, install signal handlers
    2. Long-poll SQS for one message at a time
    3. For each message:
       - Parse the chunk request (malformed -> delete, never retried)
       - Run the chunk worker (issue, upload, mark complete)
       - Delete the message on success
       - On retryable failure leave the message for redelivery
    4. Shutdown: close connections

    Delivery is at-least-once: the same chunk may be processed twice, which
    overwrites the archive at the same key and rewrites the same location.
    """

    def __init__(self, cfg: BulkCertsConfig, sqs: SQSClient, chunk_worker: ChunkWorker):
        self.cfg = cfg
        self.sqs = sqs
        self.chunk_worker = chunk_worker
        self.queue_url = cfg.queue_url

        # Empty poll tracking
        self._empty_polls: int = 0

        # Graceful shutdown flag
        self._shutdown_requested: bool = False
        self._processing_message: bool = False

    def initialize(self) -> None:
        logger.info("Initializing WorkerRuntime")
        if not self.queue_url:
            raise ValidationError("No work queue configured (set BULKCERTS_QUEUE_URL)")
        logger.info(f"Queue URL: {self.queue_url}")
        self._install_signal_handlers()

    def run_forever(self) -> None:
        """
        Main loop: poll SQS, process messages, exit after N empty polls.
        If shutdown_after_empty_polls <= 0, runs indefinitely (daemon mode for systemd).
        """
        if self.cfg.shutdown_after_empty_polls > 0:
            logger.info(f"Starting main loop (shutdown after {self.cfg.shutdown_after_empty_polls} empty polls)")
        else:
            logger.info("Starting main loop (running indefinitely in daemon mode)")

        while True:
            if self._shutdown_requested:
                logger.info("Shutdown requested, stopping SQS polling")
                break

            try:
                msg = self.sqs.receive_one(
                    queue_url=self.queue_url,
                    wait_seconds=self.cfg.poll_wait_seconds,
                    visibility_timeout=self.cfg.visibility_timeout_seconds,
                )
            except UpstreamError as e:
                logger.error(f"Failed to poll queue: {e}")
                self._empty_polls += 1
                if self._should_stop_after_empty_poll():
                    break
                continue

            if msg is None:
                self._empty_polls += 1
                if self._should_stop_after_empty_poll():
                    break
                continue

            # Check again for shutdown before processing new message
            if self._shutdown_requested:
                logger.info(f"Shutdown requested before processing, message {msg.message_id} will be redelivered")
                break

            self._empty_polls = 0
            self._processing_message = True
            try:
                self.process_message(msg)
            except Exception as e:
                logger.error(f"Failed to process message {msg.message_id}: {e}")
            finally:
                self._processing_message = False

    def process_message(self, msg: SqsChunkMessage) -> None:
        """
        Handle one message end to end, including its deletion.

        Re-raises the processing error after acting on the message.
        """
        logger.info(f"Received message from SQS: {msg.message_id}")
        try:
            try:
                request = ChunkRequest.from_json(msg.body)
            except ValidationError as e:
                raise TerminalTaskError(f"Malformed chunk message {msg.message_id}: {e}") from e

            logger.info(
                f"Processing chunk {request.task_id}/{request.chunk_id} ({request.quantity} certificates)",
                extra={"task_id": request.task_id, "chunk_id": request.chunk_id, "ca_alias": request.ca_alias},
            )
            self.chunk_worker.process(request)
            self.sqs.delete(self.queue_url, msg.receipt_handle)
            logger.info(f"Successfully processed message: {msg.message_id}")

        except Exception as exc:
            retryable, reason = self._classify_exception(exc)
            logger.error(f"Chunk failed (retryable={retryable}): {reason}", exc_info=True)

            if retryable:
                # Leave the message for redelivery, optionally sooner than the visibility timeout
                if self.cfg.retry_delay_seconds is not None:
                    self._try(self.sqs.change_visibility, self.queue_url, msg.receipt_handle, self.cfg.retry_delay_seconds)
            else:
                # Poison message: it can never succeed
                self._try(self.sqs.delete, self.queue_url, msg.receipt_handle)
            raise

    def shutdown(self) -> None:
        """Close the record store connection."""
        logger.info("Shutting down WorkerRuntime")
        self.chunk_worker.store.close()

    # ---- internals ----

    def _should_stop_after_empty_poll(self) -> bool:
        # Only check shutdown threshold if configured (> 0)
        if self.cfg.shutdown_after_empty_polls > 0:
            logger.info(f"No messages received ({self._empty_polls}/{self.cfg.shutdown_after_empty_polls})")
            if self._empty_polls >= self.cfg.shutdown_after_empty_polls:
                logger.info("Shutdown threshold reached, exiting")
                return True
        # In daemon mode, log less frequently
        elif self._empty_polls % 10 == 1:
            logger.debug(f"No messages, continuing to poll (daemon mode, {self._empty_polls} empty polls so far)")
        return False

    def _classify_exception(self, exc: Exception) -> tuple[bool, str]:
        """
        Returns (retryable, reason).
        Default: retryable=True unless the failure can never succeed on redelivery.
        """
        if isinstance(exc, (TerminalTaskError, ValidationError)):
            return False, str(exc)
        if isinstance(exc, RetryableTaskError):
            return True, str(exc)
        # Default: treat as retryable
        return True, f"{type(exc).__name__}: {exc}"

    def _try(self, func, *args) -> None:
        try:
            func(*args)
        except UpstreamError as e:
            # Log but don't fail - the original exception is more important
            logger.error(f"Queue housekeeping failed: {e}")

    def _install_signal_handlers(self) -> None:
        """
        Install signal handlers for graceful shutdown.

        Handles SIGTERM (sent by systemd/AWS during shutdown) and SIGINT (Ctrl+C).
        The first signal stops polling and lets the current chunk finish, a
        second one forces exit (the chunk is redelivered after its visibility
        timeout).
        """

        def signal_handler(signum: int, frame: Any) -> None:
            sig_name = signal.Signals(signum).name
            if not self._shutdown_requested:
                logger.info(f"Received {sig_name} signal. Initiating graceful shutdown.")
                self._shutdown_requested = True
                if self._processing_message:
                    logger.info("Currently processing a chunk. Will complete it before shutting down.")
            else:
                logger.warning(f"Received second {sig_name} signal. Forcing immediate shutdown.")
                raise KeyboardInterrupt("Forced shutdown by second signal")

        signal.signal(signal.SIGTERM, signal_handler)
        signal.signal(signal.SIGINT, signal_handler)
        logger.info("Signal handlers installed for graceful shutdown (SIGTERM, SIGINT)")
