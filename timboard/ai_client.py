from __future__ import annotations

import json
import re
from typing import Any

import requests

from timboard.models import AIConfig
from timboard.prompt import build_messages, normalize_classification


JSON_BLOCK_PATTERN = re.compile(r"```(?:json)?\s*(\{.*\})\s*```", re.DOTALL)


def _extract_json_payload(content: str) -> str:
    text = content.strip()
    if text.startswith("{") and text.endswith("}"):
        return text
    block = JSON_BLOCK_PATTERN.search(text)
    if block:
        return block.group(1)
    start = text.find("{")
    end = text.rfind("}")
    if start >= 0 and end > start:
        return text[start : end + 1]
    raise ValueError("AI response does not contain valid JSON.")


class OpenAICompatibleClient:
    """Event classifier backed by an OpenAI-compatible chat completions API.

    ``classify_event`` raises on transport or parse failures; callers are
    expected to degrade to a default category.
    """

    def __init__(self, config: AIConfig) -> None:
        self.config = config

    def is_configured(self) -> bool:
        return bool(self.config.base_url and self.config.api_key and self.config.model)

    def _chat_endpoint(self) -> str:
        base = self.config.base_url.rstrip("/")
        if base.endswith("/chat/completions"):
            return base
        return f"{base}/chat/completions"

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }

    def classify_event(self, title: str, description: str) -> dict[str, Any]:
        if not self.is_configured():
            return {}
        response = requests.post(
            self._chat_endpoint(),
            headers=self._headers(),
            json={
                "model": self.config.model,
                "messages": build_messages(title, description),
                "temperature": 0,
                "response_format": {"type": "json_object"},
            },
            timeout=self.config.timeout_seconds,
        )
        response.raise_for_status()
        payload = response.json()
        content = payload["choices"][0]["message"]["content"]
        result = json.loads(_extract_json_payload(content))
        if not isinstance(result, dict):
            raise ValueError("AI response root must be an object.")
        return normalize_classification(result)

    def test_connectivity(self) -> tuple[bool, str]:
        if not self.is_configured():
            return False, "AI config incomplete: base_url/api_key/model required."
        try:
            response = requests.post(
                self._chat_endpoint(),
                headers=self._headers(),
                json={
                    "model": self.config.model,
                    "messages": [{"role": "user", "content": "Reply with: OK"}],
                    "temperature": 0,
                    "max_tokens": 8,
                },
                timeout=self.config.timeout_seconds,
            )
            if not response.ok:
                return False, f"HTTP {response.status_code}: {response.text[:300]}"
            payload = response.json()
            content = payload.get("choices", [{}])[0].get("message", {}).get("content", "")
            content_text = str(content).strip().replace("\n", " ")
            return True, f"Connected. Model response: {content_text[:120]}"
        except requests.RequestException as exc:
            return False, f"{type(exc).__name__}: {exc}"
