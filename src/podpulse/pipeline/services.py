"""
AI Service Clients

HTTP clients for the speech-to-text and text-generation services.
Responses are normalized here so the pipeline never depends on one
provider's field names.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

import httpx

from ..config import Settings, settings

logger = logging.getLogger(__name__)


# --- Response extractors for text generation, tried in order ---

def _from_response(data: dict) -> Any:
    return data["response"]


def _from_result_response(data: dict) -> Any:
    return data["result"]["response"]


def _from_choices(data: dict) -> Any:
    return data["choices"][0]["message"]["content"]


def _from_message(data: dict) -> Any:
    return data["message"]["content"]


def _from_output_text(data: dict) -> Any:
    return data["output_text"]


def _from_text(data: dict) -> Any:
    return data["text"]


RESPONSE_EXTRACTORS: List[Callable[[dict], Any]] = [
    _from_response,           # Ollama /api/generate, Workers AI (unwrapped)
    _from_result_response,    # Workers AI REST
    _from_choices,            # OpenAI-compatible chat completions
    _from_message,            # Ollama /api/chat
    _from_output_text,        # OpenAI responses API
    _from_text,
]


def extract_generated_text(data: Any) -> str:
    """Return the first string found by the response extractors, or ''."""
    for extractor in RESPONSE_EXTRACTORS:
        try:
            value = extractor(data)
        except (KeyError, IndexError, TypeError):
            continue
        if isinstance(value, str):
            return value

    logger.warning("No generated text found in response")
    return ""


def normalize_transcription(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Normalize a speech-to-text response.

    Accepts a REST ``{"result": {...}}`` wrapper, words either at the top level
    or nested under any number of ``segments``, and duration either at
    ``duration`` or ``transcription_info.duration``.

    Returns:
        Dict with ``text``, ``words`` ([{word, start, end}]) and ``duration``
    """
    if isinstance(data.get("result"), dict):
        data = data["result"]

    raw_words = []
    for seg in data.get("segments") or []:
        raw_words.extend(seg.get("words") or [])
    if not raw_words:
        raw_words = data.get("words") or []

    words = [
        {
            "word": str(w.get("word", w.get("text", ""))),
            "start": float(w.get("start", 0.0)),
            "end": float(w.get("end", 0.0)),
        }
        for w in raw_words
    ]

    duration = data.get("duration")
    if duration is None:
        duration = (data.get("transcription_info") or {}).get("duration")

    return {
        "text": data.get("text") or "",
        "words": words,
        "duration": float(duration or 0.0),
    }


class SpeechToTextClient:
    """Client for a hosted Whisper-style transcription endpoint."""

    def __init__(
        self,
        config: Optional[Settings] = None,
        client: Optional[httpx.Client] = None,
    ):
        config = config or settings
        self.url = f"{config.speech_base_url.rstrip('/')}/{config.speech_model}"
        self.api_key = config.speech_api_key
        self.timeout = config.speech_timeout
        self._client = client

    def _post(self, payload: dict) -> dict:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        if self._client is not None:
            response = self._client.post(self.url, json=payload, headers=headers)
            response.raise_for_status()
            return response.json()

        with httpx.Client(timeout=self.timeout) as client:
            response = client.post(self.url, json=payload, headers=headers)
            response.raise_for_status()
            return response.json()

    def transcribe(self, audio_b64: str, language: str = "en") -> Dict[str, Any]:
        """
        Transcribe one base64-encoded audio chunk.

        Returns:
            Dict with text, words and duration (see normalize_transcription)
        """
        data = self._post({"audio": audio_b64, "language": language})
        return normalize_transcription(data)


class TextGenerationClient:
    """
    Chat-style text generation against the configured provider.

    Providers: ``ollama`` (default), ``openai`` (any OpenAI-compatible
    endpoint) and ``workers-ai``.
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.config = config or settings
        self.provider = self.config.llm_provider
        self.timeout = self.config.llm_timeout
        self._client = client

    def _request(self, messages: List[dict]) -> tuple:
        """Build (url, payload, headers) for the provider."""
        cfg = self.config
        if self.provider == "openai":
            return (
                f"{cfg.openai_base_url.rstrip('/')}/chat/completions",
                {"model": cfg.openai_model, "messages": messages},
                {"Authorization": f"Bearer {cfg.openai_api_key}"},
            )
        if self.provider == "workers-ai":
            return (
                f"{cfg.workers_ai_base_url.rstrip('/')}/{cfg.workers_ai_model}",
                {"messages": messages},
                {"Authorization": f"Bearer {cfg.workers_ai_api_key}"},
            )
        return (
            f"{cfg.ollama_base_url.rstrip('/')}/api/chat",
            {"model": cfg.ollama_model, "messages": messages, "stream": False},
            {},
        )

    def _post(self, url: str, payload: dict, headers: dict) -> dict:
        if self._client is not None:
            response = self._client.post(url, json=payload, headers=headers)
            response.raise_for_status()
            return response.json()

        with httpx.Client(timeout=self.timeout) as client:
            response = client.post(url, json=payload, headers=headers)
            response.raise_for_status()
            return response.json()

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        """Run one chat completion and return the generated text ('' if none)."""
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        url, payload, headers = self._request(messages)
        logger.debug(f"Calling {self.provider} text generation ({len(user_prompt)} chars)")
        return extract_generated_text(self._post(url, payload, headers))
