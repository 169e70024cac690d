"""
In-memory collaborators so the workflow and the uploader run without a
database, object storage or any AI service.
"""

import itertools
from collections import defaultdict

import pytest
from django.utils import timezone

from services.calls.exceptions import (
    RecordNotFound,
    RecordStoreError,
    ScoringError,
    TranscriptionError,
    UploadError,
)
from services.calls.rubric import RubricScore
from services.calls.scoring_service import Scorer
from services.calls.stores import ObjectStore, RecordStore
from services.calls.transcription_service import Transcriber


class MemoryRecordStore(RecordStore):
    def __init__(self):
        self.collections = defaultdict(dict)
        self.subscribers = defaultdict(list)
        self.writes = []
        self.fail_when = None
        self._ids = itertools.count(1)

    def create(self, collection, fields):
        record_id = next(self._ids)
        self.collections[collection][record_id] = {
            "id": record_id,
            "created_at": timezone.now(),
            **fields,
        }
        return record_id

    def get(self, collection, record_id):
        record = self.collections[collection].get(record_id)
        return dict(record) if record is not None else None

    def update(self, collection, record_id, fields):
        if self.fail_when is not None and self.fail_when(fields):
            raise RecordStoreError("write rejected")
        if record_id not in self.collections[collection]:
            raise RecordNotFound(collection, record_id)

        self._apply(collection, record_id, fields)

    def update_if(self, collection, record_id, expected, fields):
        if self.fail_when is not None and self.fail_when(fields):
            raise RecordStoreError("write rejected")
        record = self.collections[collection].get(record_id)
        if record is None or any(record.get(k) != v for k, v in expected.items()):
            return False
        self._apply(collection, record_id, fields)
        return True

    def _apply(self, collection, record_id, fields):
        record = self.collections[collection][record_id]
        record.update(fields)
        self.writes.append((collection, record_id, dict(fields)))
        for on_change in list(self.subscribers[(collection, record_id)]):
            on_change(dict(record))

    def subscribe(self, collection, record_id, on_change):
        key = (collection, record_id)
        self.subscribers[key].append(on_change)
        return lambda: self.subscribers[key].remove(on_change)


class FakeObjectStore(ObjectStore):
    """Fails with UploadError for each truthy entry in ``failures``, then succeeds."""

    def __init__(self, failures=()):
        self.failures = list(failures)
        self.attempts = 0
        self.keys = []

    def upload(self, fileobj, key, on_progress=None):
        self.attempts += 1
        self.keys.append(key)
        fileobj.seek(0)
        data = fileobj.read()

        if self.failures and self.failures.pop(0):
            if on_progress:
                on_progress(40)
            raise UploadError("connection reset")

        if on_progress and data:
            on_progress(50)
            on_progress(99)
        return f"https://storage.example.com/{key}"


class StubTranscriber(Transcriber):
    def __init__(self, text="Hello, thanks for calling.", error=None):
        self.text = text
        self.error = error
        self.calls = []

    def transcribe(self, storage_url):
        self.calls.append(storage_url)
        if self.error is not None:
            raise self.error
        return self.text


GOOD_SCORE = RubricScore(
    greeting_compliance=5,
    script_adherence=4,
    empathy_expression=4,
    resolution_confirmation=5,
    call_duration=3,
    overall_rating=4,
)


class StubScorer(Scorer):
    def __init__(self, score=GOOD_SCORE, error=None):
        self.score_value = score
        self.error = error
        self.calls = []

    def score(self, transcription):
        self.calls.append(transcription)
        if self.error is not None:
            raise self.error
        return self.score_value


@pytest.fixture
def record_store():
    return MemoryRecordStore()


@pytest.fixture
def uploaded_call(record_store):
    return record_store.create(
        "calls",
        {
            "file_name": "call.mp3",
            "storage_url": "https://storage.example.com/calls/1/1_call.mp3",
            "status": "uploaded",
        },
    )


@pytest.fixture
def transcriber():
    return StubTranscriber()


@pytest.fixture
def scorer():
    return StubScorer()


@pytest.fixture
def failing_transcriber():
    return StubTranscriber(error=TranscriptionError("audio is unreadable"))


@pytest.fixture
def failing_scorer():
    return StubScorer(error=ScoringError("model timed out"))
