import os
import re
from typing import Any, Dict, Tuple

from ddb_export.models import ExportJob

_ENV_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")

_JOB_KEYS = (
    "columns",
    "total_segments",
    "compressed",
    "max_file_size_mb",
    "max_file_size_bytes",
    "delimiter",
    "page_size",
    "consistent_read",
    "max_buffer_rows",
    "execution",
)


def expand_env_value(v: Any) -> Any:
    if isinstance(v, str):
        return _ENV_RE.sub(lambda m: os.getenv(m.group(1), m.group(0)), v)
    if isinstance(v, dict):
        return {k: expand_env_value(vv) for k, vv in v.items()}
    if isinstance(v, list):
        return [expand_env_value(x) for x in v]
    return v


def prepare(
    config: Dict[str, Any], table_name: str, env_name: str
) -> Tuple[Dict[str, Any], ExportJob]:
    """Return (env_cfg, job) for one table in one environment."""
    env_cfg = (config.get("envs") or {}).get(env_name)
    if not env_cfg:
        raise ValueError(f"env '{env_name}' is not defined under 'envs'")

    tables_root = config.get("tables") or {}
    table_cfg = tables_root.get(table_name) or {}
    if not table_cfg:
        raise KeyError(f"Table config '{table_name}' not found under 'tables'.")

    defaults = tables_root.get("defaults", {}) or {}
    merged = {**defaults, **table_cfg}
    output = {
        **(defaults.get("output", {}) or {}),
        **(table_cfg.get("output", {}) or {}),
    }
    s3_cfg = {
        **((defaults.get("output") or {}).get("s3", {}) or {}),
        **((table_cfg.get("output") or {}).get("s3", {}) or {}),
    }

    env_cfg = expand_env_value(env_cfg)
    merged = expand_env_value(merged)
    output = expand_env_value(output)
    s3_cfg = expand_env_value(s3_cfg)

    source_table = merged.get("table_name") or table_name
    context_vars = {"table": source_table, "env": env_name}

    columns = merged.get("columns")
    if isinstance(columns, str):
        columns = [c.strip() for c in columns.split(",") if c.strip()]

    job_kwargs = {k: merged[k] for k in _JOB_KEYS if merged.get(k) is not None}
    job_kwargs["columns"] = columns or None

    bucket = (s3_cfg.get("bucket") or "").strip()
    if bucket:
        job_kwargs["s3_bucket"] = bucket
        job_kwargs["s3_prefix"] = (
            (s3_cfg.get("prefix") or "").format(**context_vars).strip("/")
            or None
        )
        job_kwargs["s3_extra"] = {
            k: v
            for k, v in s3_cfg.items()
            if k in {"acl", "sse", "sse_kms_key_id", "part_size"}
        }
        # S3 client follows the env's region unless the output overrides it
        env_cfg = {
            **env_cfg,
            "s3": {
                "region_name": s3_cfg.get(
                    "region_name", env_cfg.get("region_name")
                ),
                "endpoint_url": s3_cfg.get("endpoint_url"),
            },
        }
    elif output.get("dir"):
        job_kwargs["output_dir"] = str(output["dir"]).format(**context_vars)

    return env_cfg, ExportJob(table=source_table, **job_kwargs)
