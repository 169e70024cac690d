from celery import shared_task
import structlog

from .exceptions import InvalidTransition
from .workflow import build_workflow

logger = structlog.get_logger(__name__)


@shared_task
def process_call_recording(call_id):
    """
    Run the processing workflow for one uploaded call.

    Not retried: a failed run leaves the record 'failed' and the user
    re-uploads.
    """
    workflow = build_workflow()

    try:
        result = workflow.run(call_id)
    except InvalidTransition as e:
        # another run claimed it first, or it is already past 'uploaded'
        logger.warning("call_processing_skipped", call_id=call_id, reason=str(e))
        return {"call_id": call_id, "status": e.current, "skipped": True}

    return {
        "call_id": result.call_id,
        "status": str(result.status),
        "error": result.error,
        "warnings": result.warnings,
    }
