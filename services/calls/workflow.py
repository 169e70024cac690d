"""
Call processing workflow.

One run takes a call record from ``uploaded`` to ``completed`` or ``failed``:

    uploaded -> fetching -> transcribing -> evaluating -> updating -> completed

``failed`` can be reached from every non-terminal status. Each status is
written to the record store before the step it names starts, so anyone
watching the record only ever sees it move forward.
"""

from dataclasses import dataclass, field
from typing import Any, List

import structlog

from .exceptions import InvalidTransition, RecordStoreError
from .models import CallRecord
from .rubric import RubricScore
from .scoring_service import Scorer, get_scorer
from .stores import CALLS, DjangoRecordStore, RecordStore
from .transcription_service import Transcriber, WhisperTranscriber

logger = structlog.get_logger(__name__)

Status = CallRecord.Status

TRANSITIONS = {
    Status.UPLOADED: {Status.FETCHING, Status.FAILED},
    Status.FETCHING: {Status.TRANSCRIBING, Status.FAILED},
    Status.TRANSCRIBING: {Status.EVALUATING, Status.FAILED},
    Status.EVALUATING: {Status.UPDATING, Status.FAILED},
    Status.UPDATING: {Status.COMPLETED, Status.FAILED},
    Status.COMPLETED: set(),
    Status.FAILED: set(),
}

TERMINAL = frozenset({Status.COMPLETED, Status.FAILED})


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, set())


@dataclass
class WorkflowResult:
    call_id: Any
    status: str
    error: str = ""
    warnings: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == Status.COMPLETED


class _StepFailed(Exception):
    """Ends a run; carries the message persisted as the record's error."""


def _describe(stage: str, exc: BaseException) -> str:
    detail = str(exc).strip() or exc.__class__.__name__
    return f"{stage} failed: {detail}"


class CallProcessingWorkflow:
    def __init__(self, record_store: RecordStore, transcriber: Transcriber, scorer: Scorer):
        self.record_store = record_store
        self.transcriber = transcriber
        self.scorer = scorer

    def run(self, call_id) -> WorkflowResult:
        """
        Process one uploaded call to a terminal status.

        Raises:
            InvalidTransition: the record exists but is not in 'uploaded'.
        """
        log = logger.bind(call_id=call_id)
        result = WorkflowResult(call_id=call_id, status=Status.UPLOADED)

        try:
            record = self.record_store.get(CALLS, call_id)
        except RecordStoreError as e:
            return self._fail(result, _describe("Fetch", e), log)

        if record is None:
            # nothing to move into 'fetching'; the error write below is expected to fail
            return self._fail(result, "Fetch failed: call record not found.", log)

        current = record.get("status")
        if current != Status.UPLOADED:
            log.warning("call_not_processable", status=current)
            raise InvalidTransition(current, Status.FETCHING)

        try:
            self._claim(result, log)
        except RecordStoreError as e:
            return self._fail(result, _describe("Fetch", e), log)

        try:
            storage_url = record.get("storage_url")
            if not storage_url:
                raise _StepFailed("Fetch failed: call has no storage URL.")

            self._advance(result, Status.TRANSCRIBING, {}, log)
            try:
                transcription = self.transcriber.transcribe(storage_url)
            except Exception as e:
                raise _StepFailed(_describe("Transcription", e))

            self._advance(result, Status.EVALUATING, {"transcription": transcription}, log)
            try:
                score = self.scorer.score(transcription)
            except Exception as e:
                raise _StepFailed(_describe("Evaluation", e))

            self._advance(result, Status.UPDATING, {}, log)
            self._commit(result, score, log)
        except _StepFailed as e:
            return self._fail(result, str(e), log)

        log.info("call_processing_completed", warnings=len(result.warnings))
        return result

    def _claim(self, result: WorkflowResult, log) -> None:
        """Move 'uploaded' to 'fetching' only if no other run got there first."""
        self._check(result.status, Status.FETCHING)
        claimed = self.record_store.update_if(
            CALLS,
            result.call_id,
            expected={"status": Status.UPLOADED},
            fields={"status": Status.FETCHING},
        )
        if not claimed:
            try:
                latest = self.record_store.get(CALLS, result.call_id) or {}
            except RecordStoreError:
                latest = {}
            current = latest.get("status", result.status)
            log.warning("call_already_claimed", status=current)
            raise InvalidTransition(current, Status.FETCHING)

        result.status = Status.FETCHING
        log.info("call_status_changed", status=Status.FETCHING)

    def _advance(self, result: WorkflowResult, target: str, fields: dict, log) -> None:
        """Write a non-final status; a failed write is reported but does not stop the run."""
        self._check(result.status, target)
        try:
            self.record_store.update(CALLS, result.call_id, {**fields, "status": target})
        except RecordStoreError as e:
            message = f"Could not save status '{target}': {e}"
            log.warning("call_status_not_saved", status=target, error=str(e))
            result.warnings.append(message)
        else:
            log.info("call_status_changed", status=target)
        result.status = target

    def _commit(self, result: WorkflowResult, score: RubricScore, log) -> None:
        self._check(result.status, Status.COMPLETED)
        try:
            self.record_store.update(
                CALLS,
                result.call_id,
                {"evaluation": score.as_dict(), "status": Status.COMPLETED},
            )
        except RecordStoreError as e:
            raise _StepFailed(_describe("Saving evaluation", e))
        result.status = Status.COMPLETED
        log.info("call_status_changed", status=Status.COMPLETED)

    def _fail(self, result: WorkflowResult, message: str, log) -> WorkflowResult:
        self._check(result.status, Status.FAILED)

        result.status = Status.FAILED
        result.error = message
        log.error("call_processing_failed", error=message)

        try:
            self.record_store.update(
                CALLS,
                result.call_id,
                {"status": Status.FAILED, "error": message},
            )
        except RecordStoreError as e:
            log.error("call_failure_not_saved", error=str(e))
            result.warnings.append(f"Could not save failure: {e}")
        return result

    @staticmethod
    def _check(current: str, target: str) -> None:
        if not can_transition(current, target):
            raise InvalidTransition(current, target)


def build_workflow() -> CallProcessingWorkflow:
    return CallProcessingWorkflow(
        record_store=DjangoRecordStore(),
        transcriber=WhisperTranscriber(),
        scorer=get_scorer(),
    )
