import gzip
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

import pandas as pd

from ddb_export.destinations import FileTarget, open_destination
from ddb_export.errors import SinkCloseError, SinkOpenError, SinkWriteError

LOG = logging.getLogger(__name__)

DEFAULT_MAX_BUFFER_ROWS = 10000


class FileSink:
    """
    One output file for one (table, segment, file_index).

    Rows are buffered and encoded in batches with pandas. write_row()
    returns False once the buffer is full; the caller must drain() before
    writing again. close() returns only after the destination is durable.
    """

    def __init__(
        self,
        target: FileTarget,
        destination,
        columns: Optional[Sequence[str]] = None,
        delimiter: str = ",",
        max_buffer_rows: int = DEFAULT_MAX_BUFFER_ROWS,
    ):
        self.target = target
        self.columns = list(columns) if columns is not None else None
        self.delimiter = delimiter
        self.max_buffer_rows = max(int(max_buffer_rows), 1)
        self.header: Optional[List[str]] = (
            list(self.columns) if self.columns is not None else None
        )
        self.rows_written = 0
        self.closed = False

        self._dest = destination
        self._stream = (
            gzip.GzipFile(fileobj=destination, mode="wb")
            if target.compressed
            else destination
        )
        self._pending: List[List[str]] = []
        self._header_written = False

    @property
    def file_name(self) -> str:
        return self.target.file_name

    @property
    def uri(self) -> str:
        return self.target.uri

    @property
    def bytes_written(self) -> int:
        return int(self._dest.bytes_written)

    @property
    def pending_rows(self) -> int:
        return len(self._pending)

    def write_row(self, row: Mapping[str, str]) -> bool:
        if self.closed:
            raise SinkWriteError(
                f"Write to closed file {self.uri}", file_name=self.file_name
            )
        if self.header is None:
            # implicit mode: first row fixes the column order for this file
            self.header = list(row.keys())
        self._pending.append([row.get(c, "") for c in self.header])
        self.rows_written += 1
        return len(self._pending) < self.max_buffer_rows

    def _encode(self) -> bytes:
        df = pd.DataFrame(self._pending, columns=self.header, dtype=object)
        text = df.to_csv(
            index=False,
            header=not self._header_written,
            sep=self.delimiter,
            lineterminator="\n",
        )
        return text.encode("utf-8")

    def drain(self) -> None:
        if self.header is None:
            return
        if not self._pending and self._header_written:
            return
        try:
            self._stream.write(self._encode())
            if self._stream is not self._dest:
                # sync flush so bytes_written covers this batch
                self._stream.flush()
        except Exception as e:
            raise SinkWriteError(
                f"Failed writing to {self.uri}", file_name=self.file_name
            ) from e
        self._pending = []
        self._header_written = True

    def close(self) -> None:
        if self.closed:
            return
        self.drain()
        try:
            if self._stream is not self._dest:
                self._stream.close()
            self._dest.close()
        except Exception as e:
            raise SinkCloseError(
                f"Failed finalizing {self.uri}", file_name=self.file_name
            ) from e
        self.closed = True

    def abort(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._pending = []
        if self._stream is not self._dest:
            try:
                self._stream.close()
            except Exception as e:
                LOG.warning(f"[sink] gzip close of {self.uri} failed: {e}")
        try:
            self._dest.abort()
        except Exception as e:
            LOG.warning(f"[sink] abort of {self.uri} failed: {e}")

    def meta(self) -> Dict[str, Any]:
        return {
            "file_name": self.file_name,
            "uri": self.uri,
            "rows": self.rows_written,
            "bytes": self.bytes_written,
        }


def open_sink(
    target: FileTarget,
    columns: Optional[Sequence[str]] = None,
    delimiter: str = ",",
    max_buffer_rows: int = DEFAULT_MAX_BUFFER_ROWS,
    s3_client=None,
) -> FileSink:
    try:
        destination = open_destination(target, s3_client=s3_client)
    except Exception as e:
        raise SinkOpenError(
            f"Could not create {target.uri}",
            segment=target.segment,
            file_name=target.file_name,
        ) from e
    return FileSink(
        target,
        destination,
        columns=columns,
        delimiter=delimiter,
        max_buffer_rows=max_buffer_rows,
    )
