from ddb_export.coordinator import ExportCoordinator, export_table, run_job
from ddb_export.events import Event, EventBus, log_events
from ddb_export.exporter import TableExporter
from ddb_export.models import ExportJob, SegmentResult
from ddb_export.projection import project

__all__ = [
    "Event",
    "EventBus",
    "ExportCoordinator",
    "ExportJob",
    "SegmentResult",
    "TableExporter",
    "export_table",
    "log_events",
    "project",
    "run_job",
]
