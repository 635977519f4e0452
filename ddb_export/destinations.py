import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

# S3 rejects non-final multipart parts smaller than this
MIN_PART_SIZE = 5 * 1024 * 1024


def build_file_name(
    table: str, segment: int, file_index: int, compressed: bool
) -> str:
    name = f"{table}-{segment}-{file_index}.csv"
    return name + ".gz" if compressed else name


def build_object_key(
    table: str, file_name: str, prefix: Optional[str] = None
) -> str:
    parts = [(prefix or "").strip("/"), table, file_name]
    return "/".join(p for p in parts if p)


@dataclass(frozen=True)
class FileTarget:
    """Where one (table, segment, file_index) file goes."""

    table: str
    segment: int
    file_index: int
    compressed: bool = False
    output_dir: Optional[str] = None
    s3_bucket: Optional[str] = None
    s3_prefix: Optional[str] = None
    s3_extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def file_name(self) -> str:
        return build_file_name(
            self.table, self.segment, self.file_index, self.compressed
        )

    @property
    def is_s3(self) -> bool:
        return bool(self.s3_bucket)

    @property
    def key(self) -> str:
        return build_object_key(self.table, self.file_name, self.s3_prefix)

    @property
    def local_path(self) -> Path:
        return Path(self.output_dir or ".") / self.table / self.file_name

    @property
    def uri(self) -> str:
        if self.is_s3:
            return f"s3://{self.s3_bucket}/{self.key}"
        return str(self.local_path)


# ---------- local filesystem ----------


class LocalFileDestination:
    def __init__(self, path: Path):
        self.path = Path(path)
        self._fh = open(self.path, "wb")
        self.bytes_written = 0

    @property
    def closed(self) -> bool:
        return self._fh.closed

    def write(self, data: bytes) -> int:
        self._fh.write(data)
        self.bytes_written += len(data)
        return len(data)

    def flush(self) -> None:
        self._fh.flush()

    def close(self) -> None:
        if self._fh.closed:
            return
        self._fh.flush()
        os.fsync(self._fh.fileno())
        self._fh.close()

    def abort(self) -> None:
        # partial file is left in place; a re-run overwrites it
        if not self._fh.closed:
            self._fh.close()


# ---------- S3 multipart upload ----------


def s3_extra_args(
    s3_cfg: Dict[str, Any], compressed: bool
) -> Dict[str, Any]:
    extra_args: Dict[str, Any] = {"ContentType": "text/csv"}
    if compressed:
        extra_args["ContentEncoding"] = "gzip"
    if s3_cfg.get("acl"):
        extra_args["ACL"] = s3_cfg["acl"]
    if s3_cfg.get("sse"):
        extra_args["ServerSideEncryption"] = s3_cfg["sse"]
    if s3_cfg.get("sse_kms_key_id"):
        extra_args["SSEKMSKeyId"] = s3_cfg["sse_kms_key_id"]
    return extra_args


class S3MultipartDestination:
    """
    Streams bytes into one S3 object.

    Bytes are buffered until a part is big enough, then uploaded
    synchronously, so write() blocking is the backpressure. The object only
    exists once close() has completed the upload.
    """

    def __init__(
        self,
        client,
        bucket: str,
        key: str,
        part_size: int = MIN_PART_SIZE,
        extra_args: Optional[Dict[str, Any]] = None,
    ):
        self.client = client
        self.bucket = bucket
        self.key = key
        self.part_size = max(int(part_size), MIN_PART_SIZE)
        resp = client.create_multipart_upload(
            Bucket=bucket, Key=key, **(extra_args or {})
        )
        self.upload_id = resp["UploadId"]
        self.parts: List[Dict[str, Any]] = []
        self.bytes_written = 0
        self.closed = False
        self._buf = bytearray()

    def write(self, data: bytes) -> int:
        self._buf.extend(data)
        self.bytes_written += len(data)
        if len(self._buf) >= self.part_size:
            self._upload_part()
        return len(data)

    def flush(self) -> None:
        # parts below the minimum size cannot be sent early
        return None

    def _upload_part(self) -> None:
        part_number = len(self.parts) + 1
        resp = self.client.upload_part(
            Bucket=self.bucket,
            Key=self.key,
            UploadId=self.upload_id,
            PartNumber=part_number,
            Body=bytes(self._buf),
        )
        self.parts.append({"ETag": resp["ETag"], "PartNumber": part_number})
        self._buf = bytearray()

    def close(self) -> None:
        if self.closed:
            return
        if self._buf or not self.parts:
            self._upload_part()
        self.client.complete_multipart_upload(
            Bucket=self.bucket,
            Key=self.key,
            UploadId=self.upload_id,
            MultipartUpload={"Parts": self.parts},
        )
        self.closed = True

    def abort(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.client.abort_multipart_upload(
            Bucket=self.bucket, Key=self.key, UploadId=self.upload_id
        )


def s3_client_config(
    env_cfg: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """S3 client settings for an env; only the region falls back to the env."""
    env_cfg = env_cfg or {}
    s3_cfg = env_cfg.get("s3") or {}
    return {
        "region_name": (
            s3_cfg.get("region_name") or env_cfg.get("region_name")
        ),
        "endpoint_url": s3_cfg.get("endpoint_url"),
    }


def build_s3_client(s3_cfg: Optional[Dict[str, Any]] = None):
    try:
        import boto3
    except Exception as e:
        raise RuntimeError("boto3 is required for S3 output.") from e

    s3_cfg = s3_cfg or {}
    region_name = s3_cfg.get("region_name")
    endpoint_url = s3_cfg.get("endpoint_url")
    session = (
        boto3.session.Session(region_name=region_name)
        if region_name
        else boto3.session.Session()
    )
    return session.client("s3", endpoint_url=endpoint_url)


def open_destination(target: FileTarget, s3_client=None):
    if target.is_s3:
        if s3_client is None:
            raise ValueError("An S3 client is required for S3 output.")
        return S3MultipartDestination(
            s3_client,
            target.s3_bucket,
            target.key,
            part_size=int(target.s3_extra.get("part_size", MIN_PART_SIZE)),
            extra_args=s3_extra_args(target.s3_extra, target.compressed),
        )
    return LocalFileDestination(target.local_path)


def ensure_container(
    table: str,
    output_dir: Optional[str] = None,
    s3_bucket: Optional[str] = None,
    s3_client=None,
) -> str:
    """Make sure the table's directory (or the bucket) is there."""
    if s3_bucket:
        if s3_client is None:
            raise ValueError("An S3 client is required for S3 output.")
        s3_client.head_bucket(Bucket=s3_bucket)
        return f"s3://{s3_bucket}"
    path = Path(output_dir or ".") / table
    path.mkdir(parents=True, exist_ok=True)
    return str(path)
