from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from ddb_export.destinations import FileTarget

DEFAULT_MAX_FILE_SIZE_MB = 250
EXECUTION_MODES = ("thread", "process")


@dataclass
class ExportJob:
    table: str
    columns: Optional[List[str]] = None
    total_segments: int = 1
    compressed: bool = False
    max_file_size_mb: Optional[float] = None
    max_file_size_bytes: Optional[int] = None
    s3_bucket: Optional[str] = None
    s3_prefix: Optional[str] = None
    output_dir: Optional[str] = None
    delimiter: str = ","
    page_size: Optional[int] = None
    consistent_read: bool = False
    max_buffer_rows: int = 10000
    execution: str = "thread"
    s3_extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.table:
            raise ValueError("table is required")
        self.total_segments = int(self.total_segments)
        if self.total_segments < 1:
            raise ValueError(
                f"total_segments must be >= 1, got {self.total_segments}"
            )
        if self.execution not in EXECUTION_MODES:
            raise ValueError(f"Unsupported execution mode: {self.execution}")
        # an empty list means the same as no list: header from the data
        self.columns = [str(c) for c in self.columns] if self.columns else None
        # unset or zero falls back to the default
        if not self.max_file_size_mb:
            self.max_file_size_mb = DEFAULT_MAX_FILE_SIZE_MB
        if not self.max_file_size_bytes:
            self.max_file_size_bytes = int(
                float(self.max_file_size_mb) * 1024 * 1024
            )

    def target(self, segment: int, file_index: int) -> FileTarget:
        return FileTarget(
            table=self.table,
            segment=segment,
            file_index=file_index,
            compressed=self.compressed,
            output_dir=self.output_dir,
            s3_bucket=self.s3_bucket,
            s3_prefix=self.s3_prefix,
            s3_extra=dict(self.s3_extra),
        )


@dataclass
class SegmentResult:
    segment: int
    rows: int = 0
    bytes_written: int = 0
    files: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SegmentResult":
        return cls(
            segment=int(data["segment"]),
            rows=int(data.get("rows", 0)),
            bytes_written=int(data.get("bytes_written", 0)),
            files=list(data.get("files") or []),
        )
