import os
from abc import ABC, abstractmethod
from urllib.parse import urlparse

import requests
import structlog
from django.conf import settings
from openai import OpenAI, OpenAIError

from .exceptions import TranscriptionError

logger = structlog.get_logger(__name__)


class Transcriber(ABC):
    @abstractmethod
    def transcribe(self, storage_url: str) -> str:
        """Return the text of the recording at storage_url, or raise TranscriptionError."""


class WhisperTranscriber(Transcriber):
    """
    Transcribe a stored call recording using Whisper.
    language is an ISO-639-1 code such as "he" or "en"; it defaults to
    TRANSCRIPTION_LANGUAGE, and empty means auto-detect.
    """

    def __init__(self, client=None, model=None, language=None, timeout=120):
        self.client = client or OpenAI(api_key=settings.OPENAI_API_KEY)
        self.model = model or settings.TRANSCRIPTION_MODEL
        self.language = language if language is not None else settings.TRANSCRIPTION_LANGUAGE
        self.timeout = timeout

    def _download(self, storage_url):
        try:
            r = requests.get(storage_url, timeout=self.timeout)
            r.raise_for_status()
        except requests.RequestException as e:
            raise TranscriptionError(f"Could not fetch audio: {e}") from e
        return r.content

    def transcribe(self, storage_url):
        audio = self._download(storage_url)
        file_name = os.path.basename(urlparse(storage_url).path) or "call.mp3"

        params = {
            "model": self.model,
            "file": (file_name, audio),
        }
        if self.language:
            params["language"] = self.language

        try:
            response = self.client.audio.transcriptions.create(**params)
        except OpenAIError as e:
            raise TranscriptionError(f"Transcription service error: {e}") from e

        text = (response.text or "").strip()
        if not text:
            raise TranscriptionError("Transcription came back empty.")

        logger.info("call_transcribed", url=storage_url, characters=len(text))
        return text
