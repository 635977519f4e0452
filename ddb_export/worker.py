"""
Single-segment worker, spawned once per segment by ProcessSegmentRunner.

Progress goes to stdout, errors to stderr, and the last stdout line is
{"status": "ok", "meta": <SegmentResult>}. Exit code 1 on failure.
"""
import argparse
import json
import sys
from typing import Any, Dict, List, Optional

from ddb_export.destinations import build_s3_client
from ddb_export.errors import ExportError
from ddb_export.events import ERROR, INFO, THROUGHPUT_EXCEEDED, EventBus
from ddb_export.models import ExportJob
from ddb_export.reader import DynamoDbReader, build_dynamodb_client
from ddb_export.scanner import SegmentScanner


def _parse_args(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(prog="ddb_export.worker")
    parser.add_argument("--table", required=True)
    parser.add_argument("--total_segments", type=int, required=True)
    parser.add_argument("--segment", type=int, required=True)
    parser.add_argument("--columns", help="Comma separated column list")
    parser.add_argument("--compressed", action="store_true")
    parser.add_argument("--max_file_size_mb", type=float)
    parser.add_argument("--max_file_size_bytes", type=int)
    parser.add_argument("--s3_bucket")
    parser.add_argument("--s3_prefix")
    parser.add_argument("--output_dir")
    parser.add_argument("--delimiter", default=",")
    parser.add_argument("--page_size", type=int)
    parser.add_argument("--consistent_read", action="store_true")
    parser.add_argument("--max_buffer_rows", type=int, default=10000)
    parser.add_argument("--region")
    parser.add_argument("--endpoint_url")
    parser.add_argument("--profile")
    parser.add_argument("--max_attempts", type=int, default=20)
    # S3 output settings, separate from the table's region/endpoint
    parser.add_argument("--s3_region")
    parser.add_argument("--s3_endpoint_url")
    parser.add_argument("--s3_acl")
    parser.add_argument("--s3_sse")
    parser.add_argument("--s3_sse_kms_key_id")
    parser.add_argument("--s3_part_size", type=int)
    return parser.parse_args(argv)


def _print_out(message: str) -> None:
    print(message, flush=True)


def _print_err(message: str) -> None:
    print(message, file=sys.stderr, flush=True)


def _s3_extra(args) -> Dict[str, Any]:
    extra = {
        "acl": args.s3_acl,
        "sse": args.s3_sse,
        "sse_kms_key_id": args.s3_sse_kms_key_id,
        "part_size": args.s3_part_size,
    }
    return {k: v for k, v in extra.items() if v is not None}


def main(argv: Optional[List[str]] = None, reader=None, s3_client=None) -> int:
    args = _parse_args(argv)

    columns = (
        [c.strip() for c in args.columns.split(",") if c.strip()]
        if args.columns
        else None
    )
    job = ExportJob(
        table=args.table,
        columns=columns,
        total_segments=args.total_segments,
        compressed=args.compressed,
        max_file_size_mb=args.max_file_size_mb,
        max_file_size_bytes=args.max_file_size_bytes,
        s3_bucket=args.s3_bucket,
        s3_prefix=args.s3_prefix,
        output_dir=args.output_dir,
        delimiter=args.delimiter,
        page_size=args.page_size,
        consistent_read=args.consistent_read,
        max_buffer_rows=args.max_buffer_rows,
        s3_extra=_s3_extra(args),
    )
    env_cfg = {
        "region_name": args.region,
        "endpoint_url": args.endpoint_url,
        "profile_name": args.profile,
        "max_attempts": args.max_attempts,
    }

    events = EventBus()
    events.subscribe(INFO, lambda ev: _print_out(ev.message))
    events.subscribe(THROUGHPUT_EXCEEDED, lambda ev: _print_out(ev.message))
    events.subscribe(ERROR, lambda ev: _print_err(ev.message))

    try:
        if reader is None:
            reader = DynamoDbReader(build_dynamodb_client(env_cfg))
        if s3_client is None and job.s3_bucket:
            s3_client = build_s3_client(
                {
                    "region_name": args.s3_region or args.region,
                    "endpoint_url": args.s3_endpoint_url,
                }
            )
        result = SegmentScanner(
            job, args.segment, reader, events=events, s3_client=s3_client
        ).run()
    except ExportError as e:
        _print_err(e.describe())
        return 1
    except Exception as e:
        _print_err(f"[segment={args.segment}] {type(e).__name__}: {e}")
        return 1

    _print_out(json.dumps({"status": "ok", "meta": result.to_dict()}))
    return 0


if __name__ == "__main__":
    sys.exit(main())
