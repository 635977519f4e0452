from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from ddb_export.errors import ReadError, ThrottlingError

THROTTLING_CODES = {
    "ProvisionedThroughputExceededException",
    "ThrottlingException",
    "RequestLimitExceeded",
}


@dataclass
class ScanPage:
    items: List[Dict[str, Any]] = field(default_factory=list)
    last_evaluated_key: Optional[Dict[str, Any]] = None


class DynamoDbReader:
    """Parallel-scan reader for one table, shared by all segments."""

    def __init__(self, client):
        self.client = client

    def scan(
        self,
        table: str,
        segment: int,
        total_segments: int,
        start_key: Optional[Dict[str, Any]] = None,
        page_size: Optional[int] = None,
        consistent_read: bool = False,
    ) -> ScanPage:
        query: Dict[str, Any] = {
            "TableName": table,
            "Segment": segment,
            "TotalSegments": total_segments,
        }
        if start_key:
            query["ExclusiveStartKey"] = start_key
        if page_size:
            query["Limit"] = int(page_size)
        if consistent_read:
            query["ConsistentRead"] = True

        try:
            data = self.client.scan(**query)
        except ClientError as e:
            code = (e.response.get("Error") or {}).get("Code", "")
            if code in THROTTLING_CODES:
                raise ThrottlingError(
                    f"Throughput exceeded on {table} ({code})",
                    segment=segment,
                ) from e
            raise ReadError(
                f"Scan of {table} failed ({code or 'unknown'})",
                segment=segment,
            ) from e
        except BotoCoreError as e:
            raise ReadError(
                f"Scan of {table} failed", segment=segment
            ) from e

        return ScanPage(
            items=list(data.get("Items") or []),
            last_evaluated_key=data.get("LastEvaluatedKey") or None,
        )


def build_dynamodb_client(env_cfg: Optional[Dict[str, Any]] = None):
    try:
        import boto3
        from botocore.config import Config
    except Exception as e:
        raise RuntimeError("boto3 is required to read from DynamoDB.") from e

    env_cfg = env_cfg or {}
    session_kwargs = {
        k: env_cfg[k]
        for k in (
            "region_name",
            "aws_access_key_id",
            "aws_secret_access_key",
            "aws_session_token",
            "profile_name",
        )
        if env_cfg.get(k)
    }
    session = boto3.session.Session(**session_kwargs)
    retries = {"max_attempts": int(env_cfg.get("max_attempts", 20))}
    if env_cfg.get("retry_mode"):
        retries["mode"] = env_cfg["retry_mode"]
    return session.client(
        "dynamodb",
        endpoint_url=env_cfg.get("endpoint_url"),
        config=Config(retries=retries),
    )
