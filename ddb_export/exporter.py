from dataclasses import replace
from typing import Any, Dict, Optional

from ddb_export.config import prepare
from ddb_export.coordinator import run_job
from ddb_export.events import EventBus, log_events


class TableExporter:
    """Thin orchestrator: config -> job -> coordinator, logging events."""

    def __init__(self, config: Dict[str, Any], log):
        self.config = config
        self.log = log

    def run(
        self,
        table_name: str,
        env_name: str,
        execution: Optional[str] = None,
        **collaborators: Any,
    ) -> Dict[str, Any]:
        self.log.info(f"[run] start table={table_name} env={env_name}")
        env_cfg, job = prepare(self.config, table_name, env_name)
        if execution:
            job = replace(job, execution=execution)

        events = collaborators.pop("events", None) or EventBus()
        log_events(events, self.log)

        try:
            meta = run_job(job, env_cfg=env_cfg, events=events, **collaborators)
        except Exception as e:
            self.log.error(
                f"[run] failed table={table_name} env={env_name}: {e}"
            )
            raise

        meta["env"] = env_name
        self.log.info(
            f"[run] done table={table_name} env={env_name} rows={meta['rows']} "
            f"files={len(meta['files'])} duration={meta['duration_s']:.3f}s"
        )
        return meta
