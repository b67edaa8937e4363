"""boto3-backed bridge implementations.

- ``EcrRegistry``: ECR image metadata (tag lookup, digest).
- ``EcsDefinitionStore``: ECS task definitions.
- ``EcsService``: ECS service update / describe.
- ``S3DynamoStateBackend``: S3 state bucket + DynamoDB lock table.

Every ``ClientError`` and ``BotoCoreError`` (connection, timeout,
credential and waiter failures) is translated into a ``BridgeError``
carrying the AWS error code, or the botocore class name when there is
none.  "Already exists" and "not found" codes are classified where the
caller needs to tell them apart.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from rollforge.bridge.protocols import BridgeError, ResourceExistsError
from rollforge.models.deployment import ServiceObservation, ServiceTarget

logger = logging.getLogger(__name__)

LOCK_HASH_KEY = "LockID"


def _client(service: str, region: str) -> Any:
    return boto3.client(service, region_name=region) if region else boto3.client(service)


def _error_code(exc: ClientError | BotoCoreError) -> str:
    # Transport and credential errors carry no AWS error code.
    if not isinstance(exc, ClientError):
        return ""
    return str(exc.response.get("Error", {}).get("Code", ""))


def _error_message(exc: ClientError | BotoCoreError) -> str:
    if not isinstance(exc, ClientError):
        return str(exc)
    return str(exc.response.get("Error", {}).get("Message", ""))


def _bridge_error(action: str, exc: ClientError | BotoCoreError) -> BridgeError:
    code = _error_code(exc) or type(exc).__name__
    return BridgeError(f"{action} failed: {exc}", code=code)


def repository_name(repository: str) -> str:
    """Strip the registry host from a repository URI.

    ``123.dkr.ecr.eu-west-1.amazonaws.com/team/app`` -> ``team/app``.
    """
    host, sep, name = repository.partition("/")
    if sep and ("." in host or ":" in host):
        return name
    return repository


# ---------------------------------------------------------------------------
# ECR
# ---------------------------------------------------------------------------


class EcrRegistry:
    """Reads tag and digest metadata from an ECR repository."""

    def __init__(self, region: str = "", client: Any = None) -> None:
        self.client = client or _client("ecr", region)

    def _describe(self, repository: str, tag: str) -> dict[str, Any] | None:
        try:
            resp = self.client.describe_images(
                repositoryName=repository_name(repository),
                imageIds=[{"imageTag": tag}],
            )
        except (ClientError, BotoCoreError) as exc:
            if _error_code(exc) == "ImageNotFoundException":
                return None
            raise _bridge_error(f"describe_images {repository}:{tag}", exc) from exc
        details = resp.get("imageDetails") or []
        return details[0] if details else None

    def tag_exists(self, repository: str, tag: str) -> bool:
        return self._describe(repository, tag) is not None

    def describe_digest(self, repository: str, tag: str) -> str | None:
        detail = self._describe(repository, tag)
        if detail is None:
            return None
        return detail.get("imageDigest") or None


# ---------------------------------------------------------------------------
# ECS task definitions
# ---------------------------------------------------------------------------


class EcsDefinitionStore:
    """Describes and registers ECS task definition revisions."""

    def __init__(self, region: str = "", client: Any = None) -> None:
        self.client = client or _client("ecs", region)

    def describe(self, family: str) -> dict[str, Any] | None:
        try:
            resp = self.client.describe_task_definition(
                taskDefinition=family, include=["TAGS"]
            )
        except (ClientError, BotoCoreError) as exc:
            message = _error_message(exc)
            if _error_code(exc) == "ClientException" and "Unable to describe" in message:
                return None
            raise _bridge_error(f"describe_task_definition {family}", exc) from exc
        payload = dict(resp["taskDefinition"])
        if resp.get("tags"):
            payload["tags"] = resp["tags"]
        return payload

    def register(self, payload: dict[str, Any]) -> tuple[int, str]:
        try:
            resp = self.client.register_task_definition(**payload)
        except (ClientError, BotoCoreError) as exc:
            raise _bridge_error(
                f"register_task_definition {payload.get('family')}", exc
            ) from exc
        registered = resp["taskDefinition"]
        return int(registered["revision"]), str(registered["taskDefinitionArn"])


# ---------------------------------------------------------------------------
# ECS services
# ---------------------------------------------------------------------------


class EcsService:
    """Updates an ECS service and reads its deployment state."""

    def __init__(self, region: str = "", client: Any = None) -> None:
        self.client = client or _client("ecs", region)

    def update(self, target: ServiceTarget, definition_identifier: str) -> None:
        try:
            self.client.update_service(
                cluster=target.cluster,
                service=target.service,
                taskDefinition=definition_identifier,
            )
        except (ClientError, BotoCoreError) as exc:
            raise _bridge_error(
                f"update_service {target.cluster}/{target.service}", exc
            ) from exc

    def describe(self, target: ServiceTarget) -> ServiceObservation:
        try:
            resp = self.client.describe_services(
                cluster=target.cluster, services=[target.service]
            )
        except (ClientError, BotoCoreError) as exc:
            raise _bridge_error(
                f"describe_services {target.cluster}/{target.service}", exc
            ) from exc

        failures = resp.get("failures") or []
        services = resp.get("services") or []
        if failures or not services:
            reason = failures[0].get("reason", "MISSING") if failures else "MISSING"
            raise BridgeError(
                f"Service {target.cluster}/{target.service} not found: {reason}",
                code=reason,
            )

        deployments = services[0].get("deployments") or []
        # A circuit-breaker rollback leaves the failed revision ACTIVE, not PRIMARY.
        failed = tuple(
            d["taskDefinition"]
            for d in deployments
            if d.get("rolloutState") == "FAILED" and d.get("taskDefinition")
        )
        primary = next(
            (d for d in deployments if d.get("status") == "PRIMARY"), None
        )
        if primary is None:
            return ServiceObservation(
                current_revision=services[0].get("taskDefinition"),
                running_count=int(services[0].get("runningCount", 0)),
                desired_count=int(services[0].get("desiredCount", 0)),
                deployment_count=len(deployments),
                failed_revisions=failed,
            )
        return ServiceObservation(
            current_revision=primary.get("taskDefinition"),
            running_count=int(primary.get("runningCount", 0)),
            desired_count=int(primary.get("desiredCount", 0)),
            deployment_count=len(deployments),
            rollout_state=primary.get("rolloutState"),
            failed_revisions=failed,
        )


# ---------------------------------------------------------------------------
# S3 + DynamoDB state backend
# ---------------------------------------------------------------------------


class S3DynamoStateBackend:
    """Versioned S3 bucket for state documents, DynamoDB table for locks."""

    def __init__(
        self,
        region: str = "",
        s3_client: Any = None,
        dynamodb_client: Any = None,
    ) -> None:
        self.region = region
        self.s3 = s3_client or _client("s3", region)
        self.dynamodb = dynamodb_client or _client("dynamodb", region)

    # -- bucket ---------------------------------------------------------

    def bucket_exists(self, bucket: str) -> bool:
        try:
            self.s3.head_bucket(Bucket=bucket)
        except (ClientError, BotoCoreError) as exc:
            if _error_code(exc) in {"404", "NoSuchBucket", "NotFound"}:
                return False
            raise _bridge_error(f"head_bucket {bucket}", exc) from exc
        return True

    def create_bucket(self, bucket: str) -> None:
        kwargs: dict[str, Any] = {"Bucket": bucket}
        if self.region and self.region != "us-east-1":
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": self.region}
        try:
            self.s3.create_bucket(**kwargs)
        except (ClientError, BotoCoreError) as exc:
            if _error_code(exc) == "BucketAlreadyOwnedByYou":
                raise ResourceExistsError(
                    f"Bucket {bucket} already exists", code=_error_code(exc)
                ) from exc
            raise _bridge_error(f"create_bucket {bucket}", exc) from exc

        try:
            self.s3.put_bucket_versioning(
                Bucket=bucket,
                VersioningConfiguration={"Status": "Enabled"},
            )
            self.s3.put_public_access_block(
                Bucket=bucket,
                PublicAccessBlockConfiguration={
                    "BlockPublicAcls": True,
                    "IgnorePublicAcls": True,
                    "BlockPublicPolicy": True,
                    "RestrictPublicBuckets": True,
                },
            )
        except (ClientError, BotoCoreError) as exc:
            raise _bridge_error(f"configure bucket {bucket}", exc) from exc
        logger.info("Created state bucket %s (versioning enabled)", bucket)

    # -- lock table -----------------------------------------------------

    def lock_table_exists(self, table: str) -> bool:
        """True once *table* is usable; a table still being created is waited for."""
        try:
            resp = self.dynamodb.describe_table(TableName=table)
        except (ClientError, BotoCoreError) as exc:
            if _error_code(exc) == "ResourceNotFoundException":
                return False
            raise _bridge_error(f"describe_table {table}", exc) from exc
        status = resp.get("Table", {}).get("TableStatus", "ACTIVE")
        if status == "CREATING":
            logger.info("Lock table %s is still being created; waiting", table)
            self._wait_for_table(table)
        elif status == "DELETING":
            raise BridgeError(f"Lock table {table} is being deleted", code="TableDeleting")
        return True

    def create_lock_table(self, table: str) -> None:
        try:
            self.dynamodb.create_table(
                TableName=table,
                AttributeDefinitions=[
                    {"AttributeName": LOCK_HASH_KEY, "AttributeType": "S"}
                ],
                KeySchema=[{"AttributeName": LOCK_HASH_KEY, "KeyType": "HASH"}],
                BillingMode="PAY_PER_REQUEST",
            )
        except (ClientError, BotoCoreError) as exc:
            if _error_code(exc) == "ResourceInUseException":
                raise ResourceExistsError(
                    f"Lock table {table} already exists", code=_error_code(exc)
                ) from exc
            raise _bridge_error(f"create_table {table}", exc) from exc
        self._wait_for_table(table)
        logger.info("Created lock table %s", table)

    def _wait_for_table(self, table: str) -> None:
        try:
            self.dynamodb.get_waiter("table_exists").wait(TableName=table)
        except (ClientError, BotoCoreError) as exc:
            raise _bridge_error(f"wait for table {table}", exc) from exc

    # -- objects --------------------------------------------------------

    def get_object(self, bucket: str, key: str) -> bytes | None:
        try:
            resp = self.s3.get_object(Bucket=bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            if _error_code(exc) in {"NoSuchKey", "404"}:
                return None
            raise _bridge_error(f"get_object s3://{bucket}/{key}", exc) from exc
        return resp["Body"].read()

    def put_object(self, bucket: str, key: str, body: bytes) -> None:
        try:
            self.s3.put_object(
                Bucket=bucket,
                Key=key,
                Body=body,
                ContentType="application/json",
                ServerSideEncryption="AES256",
            )
        except (ClientError, BotoCoreError) as exc:
            raise _bridge_error(f"put_object s3://{bucket}/{key}", exc) from exc

    # -- locks ----------------------------------------------------------

    def try_acquire_lock(self, table: str, lock_id: str, owner: str) -> bool:
        try:
            self.dynamodb.put_item(
                TableName=table,
                Item={
                    LOCK_HASH_KEY: {"S": lock_id},
                    "Owner": {"S": owner},
                    "AcquiredAt": {"S": datetime.now(timezone.utc).isoformat()},
                },
                ConditionExpression=f"attribute_not_exists({LOCK_HASH_KEY})",
            )
        except (ClientError, BotoCoreError) as exc:
            if _error_code(exc) == "ConditionalCheckFailedException":
                return False
            raise _bridge_error(f"put_item lock {lock_id}", exc) from exc
        return True

    def release_lock(self, table: str, lock_id: str, owner: str) -> None:
        try:
            self.dynamodb.delete_item(
                TableName=table,
                Key={LOCK_HASH_KEY: {"S": lock_id}},
                ConditionExpression="#owner = :owner",
                ExpressionAttributeNames={"#owner": "Owner"},
                ExpressionAttributeValues={":owner": {"S": owner}},
            )
        except (ClientError, BotoCoreError) as exc:
            raise _bridge_error(f"delete_item lock {lock_id}", exc) from exc
