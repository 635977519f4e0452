from typing import Optional


class ExportError(Exception):
    """Base class for everything a segment export can fail with.

    ``segment`` and ``file_name`` are filled in by the scanner that owns the
    failure so the coordinator can report where it happened.
    """

    def __init__(
        self,
        message: str,
        *,
        segment: Optional[int] = None,
        file_name: Optional[str] = None,
    ):
        super().__init__(message)
        self.segment = segment
        self.file_name = file_name

    def describe(self) -> str:
        where = []
        if self.segment is not None:
            where.append(f"segment={self.segment}")
        if self.file_name:
            where.append(f"file={self.file_name}")
        cause = self.__cause__
        text = str(self)
        if cause is not None and str(cause) not in text:
            text = f"{text}: {cause}"
        return f"[{' '.join(where)}] {text}" if where else text


class ThrottlingError(ExportError):
    """The table asked us to slow down. Retried by the scanner."""


class ReadError(ExportError):
    pass


class ProjectionError(ExportError):
    pass


class SinkOpenError(ExportError):
    pass


class SinkWriteError(ExportError):
    pass


class SinkCloseError(ExportError):
    pass


class WorkerProcessError(ExportError):
    def __init__(self, message: str, *, returncode: int, **kw):
        super().__init__(message, **kw)
        self.returncode = returncode
