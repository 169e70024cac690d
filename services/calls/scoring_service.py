# services/calls/scoring_service.py

import json
from abc import ABC, abstractmethod

import structlog
from django.conf import settings
from openai import OpenAI, OpenAIError

from .exceptions import ScoringError
from .rubric import RubricScore, build_rubric_prompt

logger = structlog.get_logger(__name__)


class Scorer(ABC):
    @abstractmethod
    def score(self, transcription: str) -> RubricScore:
        """Score a transcript against the rubric, or raise ScoringError."""


class OpenAIScorer(Scorer):
    def __init__(self, client=None, model=None, temperature=0.2):
        self.client = client or OpenAI(api_key=settings.OPENAI_API_KEY)
        self.model = model or settings.OPENAI_MODEL
        self.temperature = temperature

    def score(self, transcription):
        if not transcription:
            raise ScoringError("Call has no transcription to score.")

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                temperature=self.temperature,
                response_format={"type": "json_object"},
                messages=[
                    {
                        "role": "system",
                        "content": "You are a strict, consistent call-center quality assurance reviewer.",
                    },
                    {
                        "role": "user",
                        "content": build_rubric_prompt(transcription),
                    },
                ],
            )
        except OpenAIError as e:
            raise ScoringError(f"Scoring service error: {e}") from e

        content = response.choices[0].message.content or ""
        try:
            payload = json.loads(content)
        except json.JSONDecodeError as e:
            raise ScoringError(f"Scoring output is not valid JSON: {e}") from e

        # InvalidRubricScore is a ScoringError and propagates as-is
        score = RubricScore.from_payload(payload)
        logger.info("call_scored", model=self.model, overall_rating=score.overall_rating)
        return score


def get_scorer() -> Scorer:
    backend = settings.SCORING_BACKEND
    if backend == "openai":
        return OpenAIScorer()
    if backend == "ai_service":
        from .ai_client import AIServiceScorer

        return AIServiceScorer()
    raise ValueError(f"Unknown SCORING_BACKEND '{backend}'.")
