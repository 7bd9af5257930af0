# docshelf/ai.py
"""
AI Text Service Client: summarization and translation over an OpenAI-style
chat-completions endpoint. Exactly one upstream call per operation, no
streaming, no retries.
"""
import json
import logging
from typing import Dict, List, Sequence

import httpx

from docshelf.config import Settings
from docshelf.errors import ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)

SUMMARY_SYSTEM_PROMPT = "You summarize PDF documents. Provide a concise summary in bullet points."
TRANSLATE_SYSTEM_PROMPT = (
    "You are a translator. Translate accurately and keep the original formatting. Return JSON only."
)


def truncate(text: str, limit: int) -> str:
    # hard prefix cut, no sentence awareness
    return text if len(text) <= limit else text[:limit]


class AiTextClient:
    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self.settings = settings
        self.http_client = http_client

    @property
    def configured(self) -> bool:
        return bool(self.settings.ai_token)

    def require_token(self) -> str:
        if not self.settings.ai_token:
            raise ConfigurationError("Missing AI service token.")
        return self.settings.ai_token

    async def chat_completion(self, messages: List[Dict[str, str]], *, temperature: float, max_tokens: int) -> str:
        """POST one chat completion and return the trimmed content of the first choice ('' if absent)."""
        token = self.require_token()
        url = f"{self.settings.ai_base_url.rstrip('/')}/chat/completions"
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {token}",
            "api-key": token,
        }
        payload = {
            "model": self.settings.ai_model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        try:
            resp = await self.http_client.post(url, json=payload, headers=headers, timeout=self.settings.ai_timeout)
        except httpx.HTTPError as e:
            logger.exception("Chat completion request to %s failed", url)
            raise UpstreamError(f"AI request failed: {e}") from e

        if resp.status_code < 200 or resp.status_code >= 300:
            logger.error("AI non-2xx (status=%d). Body snippet: %.800s", resp.status_code, resp.text)
            raise UpstreamError(f"AI request failed: {resp.status_code} {resp.text}")

        try:
            data = resp.json()
        except ValueError as e:
            raise UpstreamError("AI response was not valid JSON.") from e

        choices = data.get("choices") if isinstance(data, dict) else None
        if not choices or not isinstance(choices[0], dict):
            return ""
        content = (choices[0].get("message") or {}).get("content")
        return content.strip() if isinstance(content, str) else ""

    async def summarize(self, text: str) -> str:
        prompt = truncate(text, self.settings.summary_max_chars)
        messages = [
            {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
            {"role": "user", "content": f"Summarize the following PDF text:\n\n{prompt}"},
        ]
        summary = await self.chat_completion(
            messages, temperature=0.2, max_tokens=self.settings.summary_max_tokens
        )
        if not summary:
            raise UpstreamError("No summary returned from the AI.")
        return summary

    async def translate(self, text: str, languages: Sequence[str]) -> Dict[str, str]:
        """
        Translate into every language at once. The model must answer with a
        single JSON object keyed by language name; anything else fails the
        whole call, so a partial map is never returned.
        """
        prompt = truncate(text, self.settings.translate_max_chars)
        messages = [
            {"role": "system", "content": TRANSLATE_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": (
                    f"Translate the following text into these languages: {', '.join(languages)}.\n"
                    "Return a JSON object where each key is the language name and each value is the translation."
                    f"\n\nText:\n{prompt}"
                ),
            },
        ]
        content = await self.chat_completion(
            messages, temperature=0.1, max_tokens=self.settings.translate_max_tokens
        )
        if not content:
            raise UpstreamError("No translation returned from the AI.")

        try:
            translations = json.loads(content)
        except ValueError:
            logger.warning("Translation output was not JSON: %.300s", content)
            translations = None

        if (
            not isinstance(translations, dict)
            or not translations
            or not all(isinstance(k, str) and isinstance(v, str) for k, v in translations.items())
        ):
            raise UpstreamError("Translation output was not valid JSON.")
        return translations
