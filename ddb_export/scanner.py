import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ddb_export.errors import ExportError, ThrottlingError
from ddb_export.events import INFO, THROUGHPUT_EXCEEDED, EventBus
from ddb_export.models import ExportJob, SegmentResult
from ddb_export.projection import project
from ddb_export.reader import ScanPage
from ddb_export.sink import FileSink, open_sink

BYTES_PER_MB = 1024 * 1024


class SegmentState(str, Enum):
    SCANNING = "scanning"
    WRITING = "writing"
    ROTATING = "rotating"
    DRAINING = "draining"
    DONE = "done"
    FAILED = "failed"


class SegmentScanner:
    """
    Scans one segment of a table into a sequence of files.

    Everything inside a segment is sequential: read a page, write its rows
    (draining whenever the sink asks), then decide whether to rotate. The
    only retry is the throttling backoff, which doubles without a ceiling
    and resets after any successful read.
    """

    def __init__(
        self,
        job: ExportJob,
        segment: int,
        reader,
        events: Optional[EventBus] = None,
        sink_factory: Callable[..., FileSink] = open_sink,
        sleep: Callable[[float], Any] = time.sleep,
        s3_client=None,
        backoff_base: float = 1.0,
    ):
        if not 0 <= segment < job.total_segments:
            raise ValueError(
                f"segment {segment} outside [0, {job.total_segments})"
            )
        self.job = job
        self.segment = segment
        self.reader = reader
        self.events = events or EventBus()
        self.sink_factory = sink_factory
        self.sleep = sleep
        self.s3_client = s3_client
        self.backoff_base = backoff_base

        self.state = SegmentState.SCANNING
        self.backoff = backoff_base
        self.file_index = 0
        self.rows = 0
        self.files: List[Dict[str, Any]] = []
        self._closed_bytes = 0
        self._sink: Optional[FileSink] = None
        self._current_file: Optional[str] = None

    @property
    def bytes_written(self) -> int:
        current = self._sink.bytes_written if self._sink is not None else 0
        return self._closed_bytes + current

    def _emit(self, name: str, message: str, **data: Any) -> None:
        self.events.emit(name, message, segment=self.segment, **data)

    # ---------- file lifecycle ----------

    def _open_sink(self) -> FileSink:
        target = self.job.target(self.segment, self.file_index)
        self._current_file = target.file_name
        sink = self.sink_factory(
            target,
            columns=self.job.columns,
            delimiter=self.job.delimiter,
            max_buffer_rows=self.job.max_buffer_rows,
            s3_client=self.s3_client,
        )
        self._sink = sink
        self._emit(
            INFO,
            f"Starting new file: {target.uri}",
            file_index=self.file_index,
            uri=target.uri,
        )
        return sink

    def _finish_sink(self, sink: FileSink) -> None:
        sink.close()
        self._closed_bytes += sink.bytes_written
        self._sink = None
        self.files.append(sink.meta())
        self._emit(
            INFO,
            f"Finished file: {sink.file_name}",
            file_index=self.file_index,
            uri=sink.uri,
            rows=sink.rows_written,
            bytes=sink.bytes_written,
        )

    # ---------- reading ----------

    def _read_page(self, token: Optional[Dict[str, Any]]) -> ScanPage:
        while True:
            try:
                page = self.reader.scan(
                    self.job.table,
                    self.segment,
                    self.job.total_segments,
                    start_key=token,
                    page_size=self.job.page_size,
                    consistent_read=self.job.consistent_read,
                )
            except ThrottlingError:
                wait = self.backoff
                self._emit(
                    THROUGHPUT_EXCEEDED,
                    f"Throughput exceeded, retrying in {wait:g}s",
                    wait=wait,
                )
                self.sleep(wait)
                self.backoff = wait * 2
                continue
            self.backoff = self.backoff_base
            return page

    # ---------- writing ----------

    def _write_page(self, sink: FileSink, items: List[Dict[str, Any]]):
        self.state = SegmentState.WRITING
        for item in items:
            row = project(item, self.job.columns)
            if not sink.write_row(row):
                sink.drain()
            self.rows += 1
        sink.drain()

    def _progress(self) -> None:
        written = self.bytes_written
        self._emit(
            INFO,
            f"Segment: {self.segment}, Row: {self.rows}, "
            f"Mb: {written / BYTES_PER_MB:.3f}",
            rows=self.rows,
            bytes=written,
            file_index=self.file_index,
        )

    def run(self) -> SegmentResult:
        token: Optional[Dict[str, Any]] = None
        try:
            sink = self._open_sink()
            while True:
                self.state = SegmentState.SCANNING
                page = self._read_page(token)
                self._write_page(sink, page.items)
                token = page.last_evaluated_key
                self._progress()

                if token is None:
                    break
                if sink.bytes_written >= self.job.max_file_size_bytes:
                    self.state = SegmentState.ROTATING
                    self._finish_sink(sink)
                    self.file_index += 1
                    sink = self._open_sink()

            self.state = SegmentState.DRAINING
            self._finish_sink(sink)
        except Exception as e:
            self.state = SegmentState.FAILED
            if self._sink is not None:
                self._sink.abort()
                self._sink = None
            if isinstance(e, ExportError):
                if e.segment is None:
                    e.segment = self.segment
                if e.file_name is None:
                    e.file_name = self._current_file
            raise

        self.state = SegmentState.DONE
        return SegmentResult(
            segment=self.segment,
            rows=self.rows,
            bytes_written=self._closed_bytes,
            files=list(self.files),
        )
