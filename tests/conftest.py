import threading
import types
from logging import Logger

import pytest

from ddb_export.errors import ThrottlingError
from ddb_export.events import EventBus
from ddb_export.reader import ScanPage
from logger.basic_logger import setup_logger


# ----- simple logger used across tests -----
class Log:
    def __init__(self):
        self.msgs = []

    def info(self, *a, **k):
        self.msgs.append(("info", a, k))

    def warning(self, *a, **k):
        self.msgs.append(("warning", a, k))

    def error(self, *a, **k):
        self.msgs.append(("error", a, k))


@pytest.fixture
def capture_log():
    return Log()


# ----- fake table reader -----
def make_items(segment, start, count):
    """DynamoDB-typed items with a stable attribute order."""
    return [
        {
            "id": {"S": f"{segment}-{i}"},
            "seq": {"N": str(i)},
            "active": {"BOOL": i % 2 == 0},
        }
        for i in range(start, start + count)
    ]


def make_pages(segment, page_sizes):
    """One ScanPage per size; every page but the last carries a token."""
    pages = []
    start = 0
    for n, size in enumerate(page_sizes):
        items = make_items(segment, start, size)
        start += size
        last = n == len(page_sizes) - 1
        token = None if last else {"id": {"S": f"{segment}-{start - 1}"}}
        pages.append(ScanPage(items=items, last_evaluated_key=token))
    return pages


class FakeReader:
    """
    script = {segment: [ScanPage | Exception, ...]}
    Each scan() pops the next entry for its segment; exceptions are raised.
    """

    def __init__(self, script):
        self._script = {k: list(v) for k, v in script.items()}
        self.calls = []
        self._lock = threading.Lock()

    def scan(
        self,
        table,
        segment,
        total_segments,
        start_key=None,
        page_size=None,
        consistent_read=False,
    ):
        with self._lock:
            self.calls.append(
                {
                    "table": table,
                    "segment": segment,
                    "total_segments": total_segments,
                    "start_key": start_key,
                }
            )
            entry = self._script[segment].pop(0)
        if isinstance(entry, Exception):
            raise entry
        return entry

    def calls_for(self, segment):
        return [c for c in self.calls if c["segment"] == segment]


@pytest.fixture
def fake_reader():
    return FakeReader


@pytest.fixture
def pages():
    return make_pages


@pytest.fixture
def items():
    return make_items


@pytest.fixture
def throttled():
    return lambda: ThrottlingError("Throughput exceeded (test)")


# ----- fake S3 client -----
class FakeS3Client:
    def __init__(self):
        self.calls = []
        self.objects = {}
        self._uploads = {}
        self._n = 0

    def head_bucket(self, Bucket):
        self.calls.append(("head_bucket", Bucket))
        return {}

    def create_multipart_upload(self, Bucket, Key, **kw):
        self._n += 1
        upload_id = f"upload-{self._n}"
        self._uploads[upload_id] = {"Bucket": Bucket, "Key": Key, "parts": {}}
        self.calls.append(("create", Bucket, Key, kw))
        return {"UploadId": upload_id}

    def upload_part(self, Bucket, Key, UploadId, PartNumber, Body):
        self._uploads[UploadId]["parts"][PartNumber] = Body
        self.calls.append(("upload_part", Key, PartNumber, len(Body)))
        return {"ETag": f'"etag-{PartNumber}"'}

    def complete_multipart_upload(self, Bucket, Key, UploadId, MultipartUpload):
        up = self._uploads.pop(UploadId)
        numbers = [p["PartNumber"] for p in MultipartUpload["Parts"]]
        self.objects[(Bucket, Key)] = b"".join(up["parts"][n] for n in numbers)
        self.calls.append(("complete", Key, numbers))
        return {}

    def abort_multipart_upload(self, Bucket, Key, UploadId):
        self._uploads.pop(UploadId, None)
        self.calls.append(("abort", Key))
        return {}

    def names(self):
        return [c[0] for c in self.calls]


@pytest.fixture
def fake_s3():
    return FakeS3Client()


# ----- stub boto3 for client builder tests -----
@pytest.fixture
def patch_boto3(monkeypatch):
    built = []

    class Session:
        def __init__(self, **kw):
            self.kw = kw

        def client(self, name, endpoint_url=None, **kw):
            built.append(
                {
                    "service": name,
                    "endpoint_url": endpoint_url,
                    "session": self.kw,
                    **kw,
                }
            )
            return types.SimpleNamespace(service=name)

    monkeypatch.setitem(
        __import__("sys").modules,
        "boto3",
        types.SimpleNamespace(session=types.SimpleNamespace(Session=Session)),
    )
    return built


@pytest.fixture
def events():
    bus = EventBus()
    bus.received = []
    bus.subscribe("*", bus.received.append)
    return bus


@pytest.fixture
def no_sleep():
    waits = []
    return waits, waits.append


@pytest.fixture(scope="session", autouse=True)
def log() -> Logger:
    log = setup_logger()
    return log
