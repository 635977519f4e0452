import threading

import pytest

from ddb_export import coordinator as coord
from ddb_export.errors import ReadError, SinkOpenError
from ddb_export.events import ERROR, INFO
from ddb_export.models import ExportJob, SegmentResult
from ddb_export.reader import ScanPage
from ddb_export.runners import ThreadSegmentRunner

# ---------- helpers ----------


def _job(tmp_path, **kw):
    kw.setdefault("total_segments", 2)
    return ExportJob(table="tbl", output_dir=str(tmp_path), **kw)


def _read_csv_lines(path):
    return path.read_text().splitlines()


# ---------- scenarios ----------


def test_two_segments_three_pages_each(tmp_path, fake_reader, pages, events):
    reader = fake_reader({0: pages(0, [100] * 3), 1: pages(1, [100] * 3)})
    job = _job(tmp_path)
    runner = ThreadSegmentRunner(job, reader, events)
    meta = coord.ExportCoordinator(job, runner, events=events).run()

    assert meta["rows"] == 600
    assert len(meta["files"]) == 2
    for seg in (0, 1):
        path = tmp_path / "tbl" / f"tbl-{seg}-0.csv"
        lines = _read_csv_lines(path)
        assert lines[0] == "id,seq,active"
        assert len(lines) == 301
    assert [s["rows"] for s in meta["segments"]] == [300, 300]


def test_total_rows_is_sum_of_rows_in_files(tmp_path, fake_reader, pages):
    reader = fake_reader(
        {
            0: pages(0, [7, 3, 5]),
            1: pages(1, [1]),
            2: pages(2, [4, 4, 4, 4]),
        }
    )
    job = _job(tmp_path, total_segments=3, max_file_size_bytes=60)
    meta = coord.run_job(job, reader=reader, sleep=lambda s: None)

    in_files = 0
    for uri in meta["files"]:
        in_files += len(_read_csv_lines(tmp_path / "tbl" / uri.split("/")[-1])) - 1
    assert meta["rows"] == in_files == 7 + 3 + 5 + 1 + 16
    assert meta["bytes"] == sum(
        (tmp_path / "tbl" / u.split("/")[-1]).stat().st_size
        for u in meta["files"]
    )


def test_segments_run_concurrently(tmp_path, pages):
    barrier = threading.Barrier(2, timeout=5)
    scripts = {0: pages(0, [1]), 1: pages(1, [1])}

    class BarrierReader:
        def scan(self, table, segment, total_segments, **kw):
            # both segments must be in flight at once to get past this
            barrier.wait()
            return scripts[segment].pop(0)

    meta = coord.run_job(_job(tmp_path), reader=BarrierReader())
    assert meta["rows"] == 2


def test_failure_does_not_cancel_siblings(tmp_path, fake_reader, pages, events):
    reader = fake_reader(
        {0: pages(0, [2, 2, 2]), 1: [ReadError("table gone")]}
    )
    job = _job(tmp_path)
    with pytest.raises(ReadError) as err:
        coord.run_job(job, reader=reader, events=events)

    assert err.value.segment == 1
    # segment 0 still ran to completion
    assert len(reader.calls_for(0)) == 3
    lines = _read_csv_lines(tmp_path / "tbl" / "tbl-0-0.csv")
    assert len(lines) == 7
    errors = [e for e in events.received if e.name == ERROR]
    assert len(errors) == 1
    assert errors[0].segment == 1
    assert "segment=1" in errors[0].message and "table gone" in errors[0].message


def test_first_error_wins_when_all_fail(tmp_path, events):
    class FailingRunner:
        def run(self, segment):
            raise ReadError(f"fail {segment}", segment=segment)

    job = _job(tmp_path, total_segments=3)
    with pytest.raises(ReadError):
        coord.ExportCoordinator(job, FailingRunner(), events=events).run()
    assert len([e for e in events.received if e.name == ERROR]) == 3


def test_unavailable_bucket_fails_before_scanning(fake_s3, events):
    def head_bucket(Bucket):
        raise RuntimeError("403")

    fake_s3.head_bucket = head_bucket

    class NeverRunner:
        def run(self, segment):
            raise AssertionError("should not run")

    job = ExportJob(table="tbl", s3_bucket="bkt")
    with pytest.raises(SinkOpenError):
        coord.ExportCoordinator(
            job, NeverRunner(), events=events, s3_client=fake_s3
        ).run()
    assert events.received[-1].name == ERROR


def test_meta_and_events(tmp_path, fake_reader, pages, events):
    reader = fake_reader({0: pages(0, [2]), 1: pages(1, [3])})
    meta = coord.run_job(_job(tmp_path), reader=reader, events=events)
    assert meta["table"] == "tbl"
    assert meta["total_segments"] == 2
    assert meta["execution"] == "thread"
    assert meta["destination"] == str(tmp_path / "tbl")
    assert meta["duration_s"] >= 0
    finished = [
        e for e in events.received
        if e.name == INFO and e.message.startswith("Segment ")
        and "finished" in e.message
    ]
    assert sorted(e.segment for e in finished) == [0, 1]
    assert events.received[-1].message.startswith("Export of tbl done")


# ---------- S3 end to end ----------


def test_export_to_s3_with_compression(fake_reader, pages, fake_s3):
    reader = fake_reader({0: pages(0, [3])})
    meta = coord.export_table(
        "tbl",
        total_segments=1,
        compressed=True,
        s3_bucket="bkt",
        s3_prefix="exp",
        reader=reader,
        s3_client=fake_s3,
    )
    assert meta["files"] == ["s3://bkt/exp/tbl/tbl-0-0.csv.gz"]
    assert ("bkt", "exp/tbl/tbl-0-0.csv.gz") in fake_s3.objects
    assert fake_s3.calls[0] == ("head_bucket", "bkt")


# ---------- convenience surface ----------


def test_export_table_defaults_file_size(tmp_path, fake_reader, pages, monkeypatch):
    seen = {}

    def fake_run_job(job, **kw):
        seen["job"] = job
        seen["kw"] = kw
        return {"rows": 0}

    monkeypatch.setattr(coord, "run_job", fake_run_job)
    coord.export_table(
        "tbl",
        columns=("a", "b"),
        total_segments=4,
        max_file_size_mb=0,
        output_dir=str(tmp_path),
        page_size=25,
        reader="R",
    )
    job = seen["job"]
    assert job.max_file_size_mb == 250
    assert job.max_file_size_bytes == 250 * 1024 * 1024
    assert job.columns == ["a", "b"] and job.page_size == 25
    assert seen["kw"] == {"reader": "R"}


def test_run_job_process_mode_uses_process_runner(tmp_path, monkeypatch):
    created = {}

    class FakeProcessRunner:
        def __init__(self, job, events, env_cfg=None):
            created["env_cfg"] = env_cfg

        def run(self, segment):
            return SegmentResult(segment=segment, rows=segment + 1)

    monkeypatch.setattr(coord, "ProcessSegmentRunner", FakeProcessRunner)
    job = _job(tmp_path, total_segments=3, execution="process")
    meta = coord.run_job(job, env_cfg={"region_name": "r"})
    assert meta["rows"] == 1 + 2 + 3
    assert created["env_cfg"] == {"region_name": "r"}


def test_empty_table(tmp_path, fake_reader):
    reader = fake_reader({0: [ScanPage()], 1: [ScanPage()]})
    meta = coord.run_job(_job(tmp_path), reader=reader)
    assert meta["rows"] == 0 and len(meta["files"]) == 2
