class CallQAError(Exception):
    """Base class for call processing errors."""


class UploadError(CallQAError):
    """A single transfer attempt to the object store failed."""


class UploadFailed(CallQAError):
    """The upload gave up after the maximum number of attempts."""

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class RecordStoreError(CallQAError):
    pass


class RecordNotFound(RecordStoreError):
    def __init__(self, collection: str, record_id):
        super().__init__(f"No record {record_id!r} in '{collection}'.")
        self.collection = collection
        self.record_id = record_id


class TranscriptionError(CallQAError):
    pass


class ScoringError(CallQAError):
    pass


class InvalidRubricScore(ScoringError):
    """The scorer returned something that is not a valid 1-5 rubric."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class InvalidTransition(CallQAError):
    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move call from '{current}' to '{target}'.")
        self.current = current
        self.target = target
