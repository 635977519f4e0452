import json
import os
import subprocess
import sys
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from ddb_export.destinations import s3_client_config
from ddb_export.errors import WorkerProcessError
from ddb_export.events import ERROR, INFO, THROUGHPUT_EXCEEDED, EventBus
from ddb_export.models import ExportJob, SegmentResult
from ddb_export.scanner import SegmentScanner
from ddb_export.sink import open_sink

_CREDENTIAL_ENV = {
    "aws_access_key_id": "AWS_ACCESS_KEY_ID",
    "aws_secret_access_key": "AWS_SECRET_ACCESS_KEY",
    "aws_session_token": "AWS_SESSION_TOKEN",
}


class ThreadSegmentRunner:
    """Runs a segment's scanner on the calling thread."""

    def __init__(
        self,
        job: ExportJob,
        reader,
        events: EventBus,
        s3_client=None,
        sleep: Callable[[float], Any] = time.sleep,
        sink_factory=open_sink,
    ):
        self.job = job
        self.reader = reader
        self.events = events
        self.s3_client = s3_client
        self.sleep = sleep
        self.sink_factory = sink_factory

    def run(self, segment: int) -> SegmentResult:
        scanner = SegmentScanner(
            self.job,
            segment,
            self.reader,
            events=self.events,
            sink_factory=self.sink_factory,
            sleep=self.sleep,
            s3_client=self.s3_client,
        )
        return scanner.run()


class ProcessSegmentRunner:
    """
    Runs each segment in its own `python -m ddb_export.worker` process.

    stdout lines become info events (throttling lines become
    throughput_exceeded), stderr lines become error events, and the worker's
    final JSON line carries its SegmentResult. A non-zero exit code fails
    the segment.
    """

    def __init__(
        self,
        job: ExportJob,
        events: EventBus,
        env_cfg: Optional[Dict[str, Any]] = None,
        python: str = sys.executable,
        popen=subprocess.Popen,
    ):
        self.job = job
        self.events = events
        self.env_cfg = env_cfg or {}
        self.python = python
        self.popen = popen

    def build_args(self, segment: int) -> List[str]:
        job = self.job
        args = [
            self.python,
            "-m",
            "ddb_export.worker",
            "--table",
            job.table,
            "--total_segments",
            str(job.total_segments),
            "--segment",
            str(segment),
            "--max_file_size_bytes",
            str(job.max_file_size_bytes),
            "--delimiter",
            job.delimiter,
            "--max_buffer_rows",
            str(job.max_buffer_rows),
        ]
        if job.columns is not None:
            args += ["--columns", ",".join(job.columns)]
        if job.compressed:
            args.append("--compressed")
        if job.s3_bucket:
            args += ["--s3_bucket", job.s3_bucket]
        if job.s3_prefix:
            args += ["--s3_prefix", job.s3_prefix]
        if job.output_dir:
            args += ["--output_dir", job.output_dir]
        if job.page_size:
            args += ["--page_size", str(job.page_size)]
        if job.consistent_read:
            args.append("--consistent_read")

        env = self.env_cfg
        for key, flag in (
            ("region_name", "--region"),
            ("endpoint_url", "--endpoint_url"),
            ("profile_name", "--profile"),
            ("max_attempts", "--max_attempts"),
        ):
            if env.get(key):
                args += [flag, str(env[key])]
        if job.s3_bucket:
            s3_client_cfg = s3_client_config(env)
            for key, source, flag in (
                ("region_name", s3_client_cfg, "--s3_region"),
                ("endpoint_url", s3_client_cfg, "--s3_endpoint_url"),
                ("acl", job.s3_extra, "--s3_acl"),
                ("sse", job.s3_extra, "--s3_sse"),
                ("sse_kms_key_id", job.s3_extra, "--s3_sse_kms_key_id"),
                ("part_size", job.s3_extra, "--s3_part_size"),
            ):
                if source.get(key):
                    args += [flag, str(source[key])]
        return args

    def _child_env(self) -> Dict[str, str]:
        # credentials travel in the environment, never on the command line
        child = dict(os.environ)
        for key, var in _CREDENTIAL_ENV.items():
            if self.env_cfg.get(key):
                child[var] = str(self.env_cfg[key])
        return child

    def run(self, segment: int) -> SegmentResult:
        proc = self.popen(
            self.build_args(segment),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            env=self._child_env(),
        )

        stderr_lines: List[str] = []

        def _pump_stderr():
            for line in proc.stderr:
                line = line.rstrip("\n")
                if not line:
                    continue
                stderr_lines.append(line)
                self.events.emit(ERROR, line, segment=segment)

        err_thread = threading.Thread(
            target=_pump_stderr, name=f"worker-stderr-{segment}", daemon=True
        )
        err_thread.start()

        result: Optional[SegmentResult] = None
        for line in proc.stdout:
            line = line.rstrip("\n")
            if not line:
                continue
            parsed = _parse_result_line(line)
            if parsed is not None:
                result = SegmentResult.from_dict(parsed)
            elif line.startswith("Throughput exceeded"):
                self.events.emit(THROUGHPUT_EXCEEDED, line, segment=segment)
            else:
                self.events.emit(INFO, line, segment=segment)

        returncode = proc.wait()
        err_thread.join()

        if returncode != 0:
            detail = stderr_lines[-1] if stderr_lines else "no stderr output"
            raise WorkerProcessError(
                f"Worker exited with code {returncode}: {detail}",
                returncode=returncode,
                segment=segment,
            )
        if result is None:
            raise WorkerProcessError(
                "Worker exited cleanly without reporting a result",
                returncode=returncode,
                segment=segment,
            )
        return result


def _parse_result_line(line: str) -> Optional[Dict[str, Any]]:
    if not line.startswith("{"):
        return None
    try:
        data = json.loads(line)
    except ValueError:
        return None
    if isinstance(data, dict) and data.get("status") == "ok":
        return data.get("meta") or None
    return None
