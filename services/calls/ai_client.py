import requests
from django.conf import settings

from .exceptions import ScoringError
from .rubric import RubricScore
from .scoring_service import Scorer


def _headers():
    h = {"Content-Type": "application/json"}
    token = getattr(settings, "AI_SERVICE_TOKEN", None)
    if token:
        h["X-AI-Token"] = token.strip()
    return h


def evaluate_via_ai_service(*, transcription: str, timeout: int = 120) -> dict:
    """
    Calls the AI service /evaluate endpoint and returns its JSON.
    """
    base_url = settings.AI_SERVICE_URL.rstrip("/")
    r = requests.post(
        f"{base_url}/evaluate",
        json={"transcription": transcription},
        headers=_headers(),
        timeout=timeout,
    )
    r.raise_for_status()
    return r.json()


class AIServiceScorer(Scorer):
    """Scores through the separately deployed AI service instead of OpenAI directly."""

    def score(self, transcription):
        if not transcription:
            raise ScoringError("Call has no transcription to score.")

        try:
            out = evaluate_via_ai_service(transcription=transcription)
        except requests.RequestException as e:
            raise ScoringError(f"AI service error: {e}") from e
        except ValueError as e:
            raise ScoringError(f"AI service returned invalid JSON: {e}") from e

        return RubricScore.from_payload(out.get("evaluation", out) if isinstance(out, dict) else out)
