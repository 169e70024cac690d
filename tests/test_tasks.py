from unittest.mock import patch

from services.calls.tasks import process_call_recording
from services.calls.workflow import CallProcessingWorkflow

from .conftest import StubScorer, StubTranscriber


def run_task(record_store, call_id, transcriber=None, scorer=None):
    workflow = CallProcessingWorkflow(record_store, transcriber or StubTranscriber(), scorer or StubScorer())
    with patch("services.calls.tasks.build_workflow", return_value=workflow):
        return process_call_recording(call_id)


def test_task_runs_workflow_to_completion(record_store, uploaded_call):
    out = run_task(record_store, uploaded_call)

    assert out == {"call_id": uploaded_call, "status": "completed", "error": "", "warnings": []}
    assert record_store.get("calls", uploaded_call)["status"] == "completed"


def test_task_reports_failure(record_store, uploaded_call, failing_transcriber):
    out = run_task(record_store, uploaded_call, transcriber=failing_transcriber)

    assert out["status"] == "failed"
    assert out["error"] == "Transcription failed: audio is unreadable"


def test_task_skips_calls_already_processed(record_store, uploaded_call):
    run_task(record_store, uploaded_call)
    writes = len(record_store.writes)

    out = run_task(record_store, uploaded_call)

    assert out["skipped"] is True
    assert out["status"] == "completed"
    assert len(record_store.writes) == writes
