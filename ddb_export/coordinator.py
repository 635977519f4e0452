import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Dict, List, Optional, Sequence

import pandas as pd

from ddb_export.destinations import (
    build_s3_client,
    ensure_container,
    s3_client_config,
)
from ddb_export.errors import ExportError, SinkOpenError
from ddb_export.events import ERROR, INFO, EventBus
from ddb_export.models import ExportJob, SegmentResult
from ddb_export.reader import DynamoDbReader, build_dynamodb_client
from ddb_export.runners import ProcessSegmentRunner, ThreadSegmentRunner


class ExportCoordinator:
    """
    Fans one export job out into total_segments concurrent segment runs.

    Segments are never cancelled because a sibling failed: every segment
    runs to its own end, then the job fails with the first error seen.
    """

    def __init__(
        self,
        job: ExportJob,
        runner,
        events: Optional[EventBus] = None,
        s3_client=None,
    ):
        self.job = job
        self.runner = runner
        self.events = events or EventBus()
        self.s3_client = s3_client

    def _ensure_container(self) -> str:
        job = self.job
        try:
            return ensure_container(
                job.table,
                output_dir=job.output_dir,
                s3_bucket=job.s3_bucket,
                s3_client=self.s3_client,
            )
        except Exception as e:
            err = SinkOpenError(
                f"Destination for {job.table} is not available: {e}"
            )
            self.events.emit(ERROR, err.describe())
            raise err from e

    def run(self) -> Dict[str, Any]:
        job = self.job
        started = pd.Timestamp.now(tz="UTC")
        container = self._ensure_container()
        self.events.emit(
            INFO,
            f"Exporting {job.table} with {job.total_segments} segment(s) "
            f"to {container}",
        )

        results: Dict[int, SegmentResult] = {}
        failures: List[BaseException] = []

        with ThreadPoolExecutor(
            max_workers=job.total_segments,
            thread_name_prefix=f"Segment-{job.table}",
        ) as executor:
            future_to_segment = {
                executor.submit(self.runner.run, segment): segment
                for segment in range(job.total_segments)
            }
            for future in as_completed(future_to_segment):
                segment = future_to_segment[future]
                try:
                    result = future.result()
                except Exception as e:
                    failures.append(e)
                    message = (
                        e.describe()
                        if isinstance(e, ExportError)
                        else f"[segment={segment}] {type(e).__name__}: {e}"
                    )
                    self.events.emit(
                        ERROR, message, segment=segment, cause=repr(e)
                    )
                    continue

                results[segment] = result
                self.events.emit(
                    INFO,
                    f"Segment {segment} finished: {result.rows} rows in "
                    f"{len(result.files)} file(s)",
                    segment=segment,
                    rows=result.rows,
                    bytes=result.bytes_written,
                )

        if failures:
            raise failures[0]

        ordered = [results[s] for s in sorted(results)]
        total_rows = sum(r.rows for r in ordered)
        total_bytes = sum(r.bytes_written for r in ordered)
        ended = pd.Timestamp.now(tz="UTC")
        self.events.emit(
            INFO,
            f"Export of {job.table} done: rows={total_rows} "
            f"bytes={total_bytes} "
            f"duration={(ended - started).total_seconds():.3f}s",
            rows=total_rows,
            bytes=total_bytes,
        )
        return {
            "table": job.table,
            "total_segments": job.total_segments,
            "rows": int(total_rows),
            "bytes": int(total_bytes),
            "compressed": job.compressed,
            "destination": container,
            "files": [f["uri"] for r in ordered for f in r.files],
            "segments": [r.to_dict() for r in ordered],
            "execution": job.execution,
            "started_at": started.isoformat(),
            "ended_at": ended.isoformat(),
            "duration_s": float((ended - started).total_seconds()),
        }


def run_job(
    job: ExportJob,
    env_cfg: Optional[Dict[str, Any]] = None,
    events: Optional[EventBus] = None,
    reader=None,
    s3_client=None,
    runner=None,
    sleep: Callable[[float], Any] = time.sleep,
) -> Dict[str, Any]:
    env_cfg = env_cfg or {}
    events = events or EventBus()
    if s3_client is None and job.s3_bucket:
        s3_client = build_s3_client(s3_client_config(env_cfg))

    if runner is None:
        if job.execution == "process":
            runner = ProcessSegmentRunner(job, events, env_cfg=env_cfg)
        else:
            if reader is None:
                reader = DynamoDbReader(build_dynamodb_client(env_cfg))
            runner = ThreadSegmentRunner(
                job, reader, events, s3_client=s3_client, sleep=sleep
            )

    return ExportCoordinator(
        job, runner, events=events, s3_client=s3_client
    ).run()


def export_table(
    table: str,
    columns: Optional[Sequence[str]] = None,
    total_segments: int = 1,
    compressed: bool = False,
    max_file_size_mb: Optional[float] = None,
    s3_bucket: Optional[str] = None,
    s3_prefix: Optional[str] = None,
    **kwargs: Any,
) -> Dict[str, Any]:
    """
    Export a whole table to {table}/{table}-{segment}-{file}.csv[.gz].

    Remaining keyword arguments are split between ExportJob fields
    (output_dir, page_size, execution, ...) and run_job() collaborators
    (env_cfg, events, reader, s3_client, runner, sleep).
    """
    run_keys = {"env_cfg", "events", "reader", "s3_client", "runner", "sleep"}
    run_kwargs = {k: kwargs.pop(k) for k in list(kwargs) if k in run_keys}
    job = ExportJob(
        table=table,
        columns=list(columns) if columns is not None else None,
        total_segments=total_segments,
        compressed=compressed,
        max_file_size_mb=max_file_size_mb,
        s3_bucket=s3_bucket,
        s3_prefix=s3_prefix,
        **kwargs,
    )
    return run_job(job, **run_kwargs)
