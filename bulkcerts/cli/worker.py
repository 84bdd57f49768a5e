"""
bulkcerts Worker CLI - Run worker instances to process chunk messages.

Usage:
  bulkcerts worker
  bulkcerts worker --shutdown-after-empty 6

Environment variables:
  BULKCERTS_SQL_HOST, BULKCERTS_SQL_PORT, BULKCERTS_SQL_USER, BULKCERTS_SQL_PASSWORD
  BULKCERTS_REGION (AWS region)
  BULKCERTS_QUEUE_URL (chunk work queue)
  BULKCERTS_S3_BUCKET, BULKCERTS_S3_PREFIX (certificate archives)
  BULKCERTS_SUPPLIER_ROOT_CAS (JSON: CA alias -> CA certificate id, or AwsIotDefault)
"""

import logging
import sys

import boto3
import click

from bulkcerts.errors import ValidationError

# Use "bulkcerts" namespace so logs appear at INFO level
logger = logging.getLogger("bulkcerts.cli.worker")


@click.command()
@click.option('--poll-wait', type=int, default=20, help='SQS long-poll wait time (seconds)')
@click.option('--visibility-timeout', type=int, default=300, help='SQS visibility timeout (seconds)')
@click.option('--retry-delay', type=int, default=30, help='Visibility applied after a retryable failure (seconds)')
@click.option('--shutdown-after-empty', type=int, default=0, help='Shutdown after N empty polls (0: run forever)')
@click.option('--region', type=str, help='AWS region (default: from BULKCERTS_REGION env or us-east-1)')
@click.pass_context
def worker(ctx, poll_wait, visibility_timeout, retry_delay, shutdown_after_empty, region):
    """Run a worker that issues certificates for chunk messages from SQS."""

    # Setup logging FIRST: root=WARNING, bulkcerts namespace=INFO
    # This ensures all subsequent logging calls use JSON format
    from bulkcerts.logging_setup import setup_logging
    setup_logging(verbose=bool(ctx.obj and ctx.obj.get('verbose')))

    from bulkcerts.config import BulkCertsConfig
    from bulkcerts.core.chunk_worker import ChunkWorker
    from bulkcerts.core.worker_runtime import WorkerRuntime
    from bulkcerts.io.db import ChunkRecordStore, DBClient
    from bulkcerts.io.s3 import ArtifactStore
    from bulkcerts.io.sqs import SQSClient

    try:
        cfg = BulkCertsConfig.from_env(
            aws_region=region,
            poll_wait_seconds=poll_wait,
            visibility_timeout_seconds=visibility_timeout,
            retry_delay_seconds=retry_delay,
            shutdown_after_empty_polls=shutdown_after_empty,
        )
    except ValidationError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    if not cfg.db_dsn:
        logger.error("Missing required SQL environment variables: BULKCERTS_SQL_HOST, BULKCERTS_SQL_USER, BULKCERTS_SQL_PASSWORD")
        sys.exit(1)
    if not cfg.s3_bucket:
        logger.error("Missing artifact bucket. Set BULKCERTS_S3_BUCKET environment variable")
        sys.exit(1)

    logger.info("Starting bulkcerts worker", extra={"region": cfg.aws_region, "s3_bucket": cfg.s3_bucket, "chunk_size": cfg.chunk_size})

    store = ChunkRecordStore(DBClient(cfg.db_dsn))
    chunk_worker = ChunkWorker(
        cfg,
        store=store,
        artifacts=ArtifactStore(cfg.aws_region),
        iot=boto3.client('iot', region_name=cfg.aws_region),
        ssm=boto3.client('ssm', region_name=cfg.aws_region),
    )
    runtime = WorkerRuntime(cfg, SQSClient(cfg.aws_region), chunk_worker)

    try:
        runtime.initialize()
        runtime.run_forever()
        logger.info("Worker completed successfully")
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")
    except Exception as e:
        logger.error(f"Worker failed: {e}", exc_info=True)
        raise
    finally:
        runtime.shutdown()
        logger.info("Worker shutdown complete")
