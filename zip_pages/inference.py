from __future__ import annotations

from typing import Optional, TypedDict, cast

import requests

from .config import Config

_API_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"


class InferenceError(RuntimeError):
    """Raised when the text completion endpoint is unavailable or misbehaves."""


class _PartPayload(TypedDict):
    text: str


class _ContentPayload(TypedDict):
    role: str
    parts: list[_PartPayload]


class _SystemPayload(TypedDict):
    parts: list[_PartPayload]


class _PartResponse(TypedDict, total=False):
    text: str


class _ContentResponse(TypedDict, total=False):
    parts: list[_PartResponse]


class _CandidateResponse(TypedDict, total=False):
    content: _ContentResponse


class _GenerateContentResponse(TypedDict, total=False):
    candidates: list[_CandidateResponse]


def complete_text(prompt: str, config: Config, *, system: Optional[str] = None) -> str:
    """Send a single-turn prompt to Gemini and return the concatenated text parts."""
    if not config.gemini_api_key:
        raise InferenceError("Set GEMINI_API_KEY to enable text completion.")
    if not prompt.strip():
        raise ValueError("Prompt cannot be empty.")

    contents: list[_ContentPayload] = [{"role": "user", "parts": [{"text": prompt}]}]
    payload: dict[str, object] = {"contents": contents}
    if system:
        system_instruction: _SystemPayload = {"parts": [{"text": system}]}
        payload["systemInstruction"] = system_instruction

    resp = requests.post(
        _API_URL.format(model=config.gemini_text_model),
        params={"key": config.gemini_api_key},
        json=payload,
        timeout=120,
    )
    if resp.status_code != 200:
        raise InferenceError(f"Gemini text request failed: {resp.status_code} {resp.text}")

    data = cast(_GenerateContentResponse, resp.json())
    texts: list[str] = []
    for candidate in data.get("candidates") or []:
        for part in candidate.get("content", {}).get("parts") or []:
            text = part.get("text")
            if text:
                texts.append(text)
        if texts:
            break
    if not texts:
        raise InferenceError(f"Unexpected Gemini text response: {data}")
    return "".join(texts)
