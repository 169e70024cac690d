from dataclasses import asdict, dataclass, fields
from typing import Any, Mapping

from .exceptions import InvalidRubricScore

SCORE_MIN = 1
SCORE_MAX = 5


@dataclass(frozen=True)
class RubricScore:
    """
    Quality scores for one call, every field in [1, 5].

    Values outside the range are a scorer contract violation: they are
    rejected, never clamped.
    """

    greeting_compliance: float
    script_adherence: float
    empathy_expression: float
    resolution_confirmation: float
    call_duration: float
    overall_rating: float

    def __post_init__(self):
        for name in self.field_names():
            _check_score(name, getattr(self, name))

    @classmethod
    def field_names(cls) -> list[str]:
        return [f.name for f in fields(cls)]

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "RubricScore":
        if not isinstance(payload, Mapping):
            raise InvalidRubricScore("Rubric score must be a JSON object.")

        missing = [name for name in cls.field_names() if name not in payload]
        if missing:
            raise InvalidRubricScore(
                f"Rubric score is missing fields: {', '.join(missing)}",
                field=missing[0],
            )

        return cls(**{name: payload[name] for name in cls.field_names()})

    def as_dict(self) -> dict:
        return asdict(self)


def _check_score(name: str, value: Any) -> None:
    # bool is an int subclass, but True is not a score
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidRubricScore(
            f"'{name}' must be a number, got {value!r}.", field=name
        )
    if value != value or not SCORE_MIN <= value <= SCORE_MAX:
        raise InvalidRubricScore(
            f"'{name}' must be between {SCORE_MIN} and {SCORE_MAX}, got {value!r}.",
            field=name,
        )


RUBRIC_PROMPT = """
You are a call quality assurance expert. Evaluate the following call
transcription on these metrics and give an overall rating.

- greeting_compliance: Did the agent greet the customer appropriately at the beginning of the call? Score 1-5.
- script_adherence: Did the agent follow the prescribed script throughout the conversation? Score 1-5.
- empathy_expression: Did the agent express empathy during the call? Score 1-5.
- resolution_confirmation: Did the agent confirm the resolution of the customer's issue? Score 1-5.
- call_duration: Was the call duration within the acceptable range? Score 1-5.
- overall_rating: Overall rating for the call. Score 1-5.

Return only a JSON object with exactly these six keys and numeric values.

---------------- TRANSCRIPT START ----------------
{transcription}
---------------- TRANSCRIPT END ----------------
"""


def build_rubric_prompt(transcription: str) -> str:
    return RUBRIC_PROMPT.format(transcription=transcription)
