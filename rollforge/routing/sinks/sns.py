"""SNS sink: publishes rollout notifications to an SNS topic."""

from __future__ import annotations

import json
import logging
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from rollforge.bridge.protocols import BridgeError
from rollforge.models.notifications import RolloutNotification

logger = logging.getLogger(__name__)

# SNS rejects subjects longer than this.
SUBJECT_MAX = 100


class SnsSink:
    """Publishes each notification as a JSON message.

    The status and environment are also sent as message attributes so
    subscribers can filter on them.
    """

    def __init__(self, topic_arn: str, region: str = "", client: Any = None) -> None:
        self._topic_arn = topic_arn
        if client is None:
            client = boto3.client("sns", region_name=region) if region else boto3.client("sns")
        self._client = client

    @property
    def sink_name(self) -> str:
        return "sns"

    def accept(self, notification: RolloutNotification) -> None:
        body = {
            "run_id": notification.run_id,
            "status": notification.status.value,
            "environment": notification.environment,
            "revision_identifier": notification.revision_identifier,
            "image_ref": notification.image_ref,
            "error": notification.error_message,
        }
        attrs = {
            "status": {"DataType": "String", "StringValue": notification.status.value},
            "environment": {"DataType": "String", "StringValue": notification.environment},
        }
        try:
            response = self._client.publish(
                TopicArn=self._topic_arn,
                Subject=notification.subject[:SUBJECT_MAX],
                Message=json.dumps(body),
                MessageAttributes=attrs,
            )
        except (ClientError, BotoCoreError) as exc:
            code = (
                exc.response.get("Error", {}).get("Code", "")
                if isinstance(exc, ClientError)
                else type(exc).__name__
            )
            raise BridgeError(f"SNS publish to {self._topic_arn} failed: {exc}", code=code) from exc
        logger.info(
            "Published run %s to %s (message %s)",
            notification.run_id,
            self._topic_arn,
            response.get("MessageId", "?"),
        )
