# core/llm_client.py - Gemini collaborator for structured site generation

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Sequence

import aiohttp

from .config import AiConfig
from .errors import AiParseError, AiRateLimitError, AiTransportError
from .interfaces import AiCollaborator

logger = logging.getLogger(__name__)


def _to_gemini_part(part: Dict[str, Any]) -> Dict[str, Any]:
    """Convert an engine prompt part into the REST shape Gemini expects."""
    if "inline_data" in part:
        inline = part["inline_data"]
        return {"inlineData": {"mimeType": inline["mime_type"], "data": inline["data"]}}
    return {"text": part.get("text", "")}


def extract_text(body: Dict[str, Any]) -> str:
    """Join the text parts of the first candidate of a generateContent response."""
    try:
        parts = body["candidates"][0]["content"]["parts"]
    except (KeyError, IndexError, TypeError) as e:
        raise AiParseError(f"Gemini response has no candidate content: {e}")
    return "".join(part.get("text", "") for part in parts if isinstance(part, dict))


class GeminiClient(AiCollaborator):
    """
    Calls Gemini ``generateContent`` with a JSON response schema.

    One HTTP request per call, no retries here: the engine's RetryPolicy owns
    retrying. HTTP 429 and RESOURCE_EXHAUSTED map to AiRateLimitError.
    """

    def __init__(self, config: AiConfig, session: Optional[aiohttp.ClientSession] = None):
        if not config.api_key:
            raise ValueError("API key not set. Configure GEMINI_API_KEY or API_KEY.")
        self.config = config
        self._session = session

    def _build_payload(self, system_instruction: str, prompt_parts: Sequence[Dict[str, Any]],
                       response_schema: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "systemInstruction": {"parts": [{"text": system_instruction}]},
            "contents": [{"role": "user", "parts": [_to_gemini_part(p) for p in prompt_parts]}],
            "generationConfig": {
                "temperature": self.config.temperature,
                "responseMimeType": "application/json",
                "responseSchema": response_schema,
            },
        }

    async def generate(self, system_instruction: str, prompt_parts: Sequence[Dict[str, Any]],
                       response_schema: Dict[str, Any]) -> str:
        url = f"{self.config.api_base}/v1beta/models/{self.config.model}:generateContent"
        payload = self._build_payload(system_instruction, prompt_parts, response_schema)
        headers = {"x-goog-api-key": self.config.api_key, "Content-Type": "application/json"}
        timeout = aiohttp.ClientTimeout(total=self.config.timeout)

        owns_session = self._session is None
        session = self._session or aiohttp.ClientSession()
        try:
            async with session.post(url, headers=headers, json=payload, timeout=timeout) as response:
                body_text = await response.text()
                self._raise_for_status(response.status, body_text)
        except aiohttp.ClientError as e:
            raise AiTransportError(f"Gemini request failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise AiTransportError(f"Gemini request timed out after {self.config.timeout}s") from e
        finally:
            if owns_session:
                await session.close()

        try:
            body = json.loads(body_text)
        except json.JSONDecodeError as e:
            raise AiParseError(f"Gemini returned a non-JSON body: {e}") from e

        text = extract_text(body).strip()
        logger.debug(f"Gemini returned {len(text)} chars")
        return text

    @staticmethod
    def _raise_for_status(status: int, body_text: str):
        if status == 200:
            return
        if status == 429 or "RESOURCE_EXHAUSTED" in body_text:
            raise AiRateLimitError(f"Gemini API error {status}: Resource has been exhausted")
        raise AiTransportError(f"Gemini API error {status}: {body_text[:500]}")
