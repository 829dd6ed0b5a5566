"""boto3 client construction and error classification for AWS-backed sinks."""

from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

RETRYABLE_ERROR_CODES = frozenset(
    {
        "ConditionalRequestConflict",
        "InternalError",
        "InternalServerError",
        "ProvisionedThroughputExceededException",
        "RequestLimitExceeded",
        "RequestTimeout",
        "ServiceUnavailable",
        "SlowDown",
        "Throttling",
        "ThrottlingException",
    }
)


def attempt_timeout(timeout_seconds: float, max_attempts: int) -> float:
    """Connect and read timeout for one attempt so a whole call fits in ``timeout_seconds``.

    Budgets ``max_attempts + 1`` attempts of connect plus read, which also
    covers retry modes that count ``max_attempts`` as retries after the first
    call.
    """
    return timeout_seconds / (2 * (max_attempts + 1))


def client_config(timeout_seconds: float, max_attempts: int = 2) -> Config:
    """botocore config bounding each call below the dispatcher's sink timeout.

    A write the dispatcher has given up on must not land after its
    redelivered successor, so every attempt, retries included, ends before
    ``timeout_seconds`` has passed.
    """
    per_attempt = attempt_timeout(timeout_seconds, max_attempts)
    return Config(
        connect_timeout=per_attempt,
        read_timeout=per_attempt,
        retries={"max_attempts": max_attempts, "mode": "standard"},
    )


def get_s3_client(
    endpoint_url: str | None = None,
    region_name: str | None = None,
    timeout_seconds: float = 5.0,
) -> Any:
    """Create an S3 client.

    ``endpoint_url`` points the client at an S3-compatible store (MinIO,
    LocalStack) for local development; otherwise the standard AWS endpoint
    for ``region_name`` is used.
    """
    if endpoint_url:
        return boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            region_name=region_name,
            config=client_config(timeout_seconds),
        )
    return boto3.client("s3", region_name=region_name, config=client_config(timeout_seconds))


def get_dynamodb_table(
    table_name: str,
    endpoint_url: str | None = None,
    region_name: str | None = None,
    timeout_seconds: float = 5.0,
) -> Any:
    """Create a DynamoDB ``Table`` resource."""
    resource = boto3.resource(
        "dynamodb",
        endpoint_url=endpoint_url,
        region_name=region_name,
        config=client_config(timeout_seconds),
    )
    return resource.Table(table_name)


def error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


def is_retryable(exc: ClientError) -> bool:
    """Whether redelivering the write that raised ``exc`` can succeed."""
    if error_code(exc) in RETRYABLE_ERROR_CODES:
        return True
    status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
    return status == 429 or status >= 500
