import argparse
import json
import os
import sys
from pathlib import Path
from typing import List, Optional

from ddb_export.exporter import TableExporter
from logger.basic_logger import setup_logger
from utils.config_reader import ConfigReader


# --------------------------------
# Parse job parameters
# --------------------------------
def _parse_args(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(
        description="Export a DynamoDB table to CSV files (local or S3)."
    )
    parser.add_argument(
        "-y", "--yaml_path", required=True, help="Path to the export YAML"
    )
    parser.add_argument("--table", required=True, help="Table key under 'tables'")
    parser.add_argument(
        "--env", dest="env_name", required=True, help="Env key under 'envs'"
    )
    parser.add_argument(
        "--execution",
        choices=["thread", "process"],
        help="Override the table's execution mode",
    )
    parser.add_argument("--log_level", default="INFO")
    parser.add_argument(
        "--extra_env", action="append", default=[], help="KEY=VALUE; repeatable"
    )

    # schedulers often pass extra arguments; ignore them
    args, unknown = parser.parse_known_args(argv)
    if unknown:
        print(
            f"[runner] Ignoring unknown args: {unknown[:8]}{' ...' if len(unknown) > 8 else ''}"
        )
    return args


# --------------------------------
# Main: load config and run the export
# --------------------------------
def main(argv: Optional[List[str]] = None, **collaborators) -> int:
    args = _parse_args(argv)
    log = setup_logger(args.log_level)

    # Optional: export any extra envs before ${VAR} expansion happens
    for kv in args.extra_env:
        if "=" in kv:
            k, v = kv.split("=", 1)
            os.environ[k] = v
            log.info("Set env %s", k)

    config = (
        ConfigReader(log, Path(args.yaml_path)).load_configurations().configs_data
    )
    log.info(
        "Starting export: table=%s env=%s yaml=%s",
        args.table,
        args.env_name,
        args.yaml_path,
    )

    exporter = TableExporter(config=config, log=log)
    try:
        meta = exporter.run(
            args.table, args.env_name, execution=args.execution, **collaborators
        )
    except Exception as e:
        print(json.dumps({"status": "error", "error": str(e)}))
        return 1

    print(json.dumps({"status": "ok", "meta": meta}))
    return 0


if __name__ == "__main__":
    sys.exit(main())
