"""Gemini gateway provider using Google's Generative Language REST API."""
from __future__ import annotations

from typing import Optional

import requests

from diarist.services.llm.base import BaseGatewayProvider, GatewayTransportError

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com"


class GeminiProvider(BaseGatewayProvider):
    """Gateway provider for Google Gemini models."""

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: int = 600,
    ) -> None:
        super().__init__(logger_name="diarist.gateway.gemini")
        self._api_key = api_key
        self._base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self._timeout = timeout

    def _call_api(
        self,
        parts: list[dict],
        model_id: str,
        response_schema: Optional[dict] = None,
    ) -> str:
        """Make a call to the Gemini API and return the response text."""
        # Model name may arrive with or without the "models/" prefix
        model_name = model_id
        if not model_name.startswith("models/"):
            model_name = f"models/{model_name}"

        url = f"{self._base_url}/v1beta/{model_name}:generateContent"

        request_body: dict = {"contents": [{"role": "user", "parts": parts}]}
        if response_schema is not None:
            request_body["generationConfig"] = {
                "responseMimeType": "application/json",
                "responseSchema": response_schema,
            }

        try:
            response = requests.post(
                url,
                headers={
                    "Content-Type": "application/json",
                    "x-goog-api-key": self._api_key,
                },
                json=request_body,
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            self._logger.error("Gemini request failed: %s", exc)
            raise GatewayTransportError("Failed to reach Gemini API.") from exc

        if response.status_code != 200:
            self._logger.error("Gemini error: %s - %s", response.status_code, response.text[:500])
            raise GatewayTransportError(f"Gemini API error: {response.status_code}")

        try:
            data = response.json()
        except ValueError as exc:
            raise GatewayTransportError("Gemini API returned a non-JSON body.") from exc
        if not isinstance(data, dict):
            self._logger.error("Gemini returned %s instead of an object", type(data).__name__)
            raise GatewayTransportError("Gemini API returned an unexpected response.")

        candidates = data.get("candidates") or []
        if not candidates:
            feedback = data.get("promptFeedback") or {}
            if isinstance(feedback, dict) and feedback.get("blockReason"):
                self._logger.warning("Gemini blocked prompt: %s", feedback.get("blockReason"))
            return ""

        candidate = candidates[0] if isinstance(candidates, list) else None
        content = (candidate.get("content") or {}) if isinstance(candidate, dict) else None
        parts = (content.get("parts") or []) if isinstance(content, dict) else None
        if not isinstance(parts, list) or not all(isinstance(part, dict) for part in parts):
            self._logger.error("Gemini candidate has no usable parts: %s", str(candidate)[:500])
            raise GatewayTransportError("Gemini API returned an unexpected response.")

        texts = [part["text"] for part in parts if isinstance(part.get("text"), str)]
        return "".join(texts)
