from __future__ import annotations
from typing import Dict, Optional

import boto3
from botocore.exceptions import ClientError

from bulkcerts.core.models import ChunkRequest, SqsChunkMessage
from bulkcerts.errors import UpstreamError


class SQSClient:
    """AWS SQS client for the chunk work queue."""

    def __init__(self, region: str, client=None):
        """
        Initialize SQS client.

        Args:
            region: AWS region (e.g., "us-east-1")
            client: Optional pre-built boto3 SQS client
        """
        self.region = region
        self.client = client or boto3.client('sqs', region_name=region)

    def send_chunk_request(self, queue_url: str, request: ChunkRequest) -> str:
        """
        Publish one "process this chunk" message.

        taskId/chunkId are duplicated as message attributes so queues can be
        inspected without parsing bodies.

        Returns:
            SQS MessageId
        """
        return self.send_raw(
            queue_url,
            request.to_json(),
            attributes={'taskId': request.task_id, 'chunkId': str(request.chunk_id)},
        )

    def send_raw(self, queue_url: str, body: str, attributes: Optional[Dict[str, str]] = None) -> str:
        """
        Send a raw message to the queue.

        Args:
            queue_url: SQS queue URL
            body: Message body (typically JSON string)
            attributes: Optional string message attributes
        """
        kwargs = {
            'QueueUrl': queue_url,
            'MessageBody': body,
        }
        if attributes:
            kwargs['MessageAttributes'] = {
                name: {'StringValue': value, 'DataType': 'String'}
                for name, value in attributes.items()
            }

        try:
            response = self.client.send_message(**kwargs)
        except ClientError as e:
            raise UpstreamError(f"Failed to send SQS message: {e}") from e
        return response.get('MessageId', '')

    def receive_one(
        self,
        queue_url: str,
        wait_seconds: int,
        visibility_timeout: int,
    ) -> Optional[SqsChunkMessage]:
        """
        Long-poll and return a single message or None.

        The body is returned unparsed: a malformed body is the worker's
        decision to drop, not the transport's.

        Args:
            queue_url: SQS queue URL
            wait_seconds: Long polling wait time (0-20 seconds)
            visibility_timeout: How long the message should be hidden from other consumers
        """
        try:
            response = self.client.receive_message(
                QueueUrl=queue_url,
                MaxNumberOfMessages=1,
                WaitTimeSeconds=wait_seconds,
                VisibilityTimeout=visibility_timeout,
                MessageAttributeNames=['All']
            )
        except ClientError as e:
            raise UpstreamError(f"Failed to receive message from SQS: {e}") from e

        messages = response.get('Messages', [])
        if not messages:
            return None

        msg = messages[0]
        return SqsChunkMessage(
            message_id=msg['MessageId'],
            receipt_handle=msg['ReceiptHandle'],
            body=msg.get('Body', ''),
        )

    def delete(self, queue_url: str, receipt_handle: str) -> None:
        """
        Delete a message from the queue.

        Args:
            queue_url: SQS queue URL
            receipt_handle: Receipt handle from received message
        """
        try:
            self.client.delete_message(
                QueueUrl=queue_url,
                ReceiptHandle=receipt_handle
            )
        except ClientError as e:
            raise UpstreamError(f"Failed to delete SQS message: {e}") from e

    def change_visibility(
        self,
        queue_url: str,
        receipt_handle: str,
        timeout_seconds: int,
    ) -> None:
        """
        Change the visibility timeout of a message.

        Used after a retryable failure to control when the chunk is redelivered.

        Args:
            queue_url: SQS queue URL
            receipt_handle: Receipt handle from received message
            timeout_seconds: New visibility timeout in seconds (0-43200)
        """
        try:
            self.client.change_message_visibility(
                QueueUrl=queue_url,
                ReceiptHandle=receipt_handle,
                VisibilityTimeout=timeout_seconds
            )
        except ClientError as e:
            raise UpstreamError(f"Failed to change visibility: {e}") from e

    def get_queue_stats(self, queue_url: str) -> dict:
        """
        Get queue statistics.

        Returns:
            Dict with approximate message counts and timestamps
        """
        try:
            response = self.client.get_queue_attributes(
                QueueUrl=queue_url,
                AttributeNames=['All']
            )
        except ClientError as e:
            raise UpstreamError(f"Failed to read queue attributes: {e}") from e

        attrs = response.get('Attributes', {})

        return {
            'approximate_messages': int(attrs.get('ApproximateNumberOfMessages', 0)),
            'approximate_messages_not_visible': int(attrs.get('ApproximateNumberOfMessagesNotVisible', 0)),
            'approximate_messages_delayed': int(attrs.get('ApproximateNumberOfMessagesDelayed', 0)),
            'created_timestamp': int(attrs.get('CreatedTimestamp', 0)),
            'last_modified_timestamp': int(attrs.get('LastModifiedTimestamp', 0)),
        }

    def purge(self, queue_url: str) -> None:
        """
        Purge all messages from a queue.

        WARNING: This is irreversible!
        """
        try:
            self.client.purge_queue(QueueUrl=queue_url)
        except ClientError as e:
            raise UpstreamError(f"Failed to purge queue: {e}") from e
