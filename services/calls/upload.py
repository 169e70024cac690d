import time
from dataclasses import dataclass
from typing import Any, BinaryIO, Callable, Optional

import structlog
from django.conf import settings
from django.utils.text import get_valid_filename

from .exceptions import RecordStoreError, UploadError, UploadFailed
from .models import CallRecord
from .stores import CALLS, ObjectStore, ProgressCallback, RecordStore

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class UploadResult:
    call_id: Any
    storage_url: str
    storage_key: str


def build_storage_key(user_id, file_name: str, now: Optional[float] = None) -> str:
    """calls/<user>/<epoch millis>_<file name>, unique per user and moment."""
    millis = int((time.time() if now is None else now) * 1000)
    return f"calls/{user_id}/{millis}_{get_valid_filename(file_name)}"


class DurableUploader:
    """
    Moves a recording into the object store and creates its call record.

    A transfer is tried at most ``max_attempts`` times; before retry number n
    the uploader waits ``retry_base_delay * n`` seconds. The call record is
    only created once the object store has returned a URL for the audio.
    """

    def __init__(
        self,
        object_store: ObjectStore,
        record_store: RecordStore,
        max_attempts: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.object_store = object_store
        self.record_store = record_store
        self.max_attempts = max_attempts if max_attempts is not None else settings.UPLOAD_MAX_ATTEMPTS
        self.retry_base_delay = (
            retry_base_delay if retry_base_delay is not None else settings.UPLOAD_RETRY_BASE_DELAY
        )
        self.sleep = sleep

        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def upload(
        self,
        fileobj: BinaryIO,
        file_name: str,
        user_id,
        agent_id=None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> UploadResult:
        report = on_progress or (lambda percent: None)
        key = build_storage_key(user_id, file_name)
        log = logger.bind(key=key)

        report(0)
        url = self._transfer(fileobj, key, report, log)

        fields = {
            "file_name": file_name,
            "storage_key": key,
            "storage_url": url,
            "status": CallRecord.Status.UPLOADED,
            "uploaded_by_id": user_id,
        }
        if agent_id is not None:
            fields["agent_id"] = agent_id

        try:
            call_id = self.record_store.create(CALLS, fields)
        except RecordStoreError as e:
            log.error("call_record_not_created", error=str(e))
            report(0)
            raise UploadFailed(f"Upload stored but the call record could not be saved: {e}") from e

        # 100 only once the record exists
        report(100)
        log.info("call_uploaded", call_id=call_id, url=url)
        return UploadResult(call_id=call_id, storage_url=url, storage_key=key)

    def _transfer(self, fileobj, key, report, log) -> str:
        attempt = 1
        while True:
            try:
                return self.object_store.upload(fileobj, key, on_progress=report)
            except UploadError as e:
                if attempt >= self.max_attempts:
                    log.error("upload_failed_permanently", attempts=attempt, error=str(e))
                    report(0)
                    raise UploadFailed(
                        f"Upload failed after {attempt} attempts: {e}", attempts=attempt
                    ) from e

                delay = self.retry_base_delay * attempt
                log.warning("upload_retrying", attempt=attempt, delay=delay, error=str(e))
                self.sleep(delay)
                attempt += 1
