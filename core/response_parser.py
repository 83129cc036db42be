# core/response_parser.py - Validates the structured response of the AI collaborator

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, List, Mapping, Union

from .state_models import FileEntry

logger = logging.getLogger(__name__)

_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*([\s\S]*?)\s*```$")


@dataclass(frozen=True)
class ValidResponse:
    ai_summary: str
    commit_message: str
    summary: str
    files: List[FileEntry]

    @property
    def changed_file_count(self) -> int:
        return len(self.files)


@dataclass(frozen=True)
class MalformedResponse:
    reason: str
    raw_preview: str = ""


ParsedResponse = Union[ValidResponse, MalformedResponse]


def _strip_markdown_fence(text: str) -> str:
    match = _FENCE_PATTERN.match(text)
    return match.group(1) if match else text


def _decode(raw: Union[str, bytes, Mapping[str, Any]]) -> Any:
    if isinstance(raw, Mapping):
        return raw
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    if not isinstance(raw, str):
        raise TypeError(f"unsupported response type {type(raw).__name__}")
    return json.loads(_strip_markdown_fence(raw.strip()))


def parse_ai_response(raw: Union[str, bytes, Mapping[str, Any]]) -> ParsedResponse:
    """
    Decode and validate an AI response.

    The payload must be a JSON object whose ``files`` field is a list of
    ``{"path", "content"}`` objects with non-empty string values. ``aiSummary``,
    ``commitMessage`` and ``summary`` are optional but must be strings when given.
    """
    preview = raw[:200] if isinstance(raw, (str, bytes)) else ""
    try:
        data = _decode(raw)
    except (json.JSONDecodeError, TypeError, ValueError) as e:
        logger.error(f"Failed to decode AI response: {e}")
        return MalformedResponse(f"response is not valid JSON: {e}", str(preview))

    if not isinstance(data, Mapping):
        return MalformedResponse(f"expected a JSON object, got {type(data).__name__}", str(preview))

    files = data.get("files")
    if not isinstance(files, list):
        return MalformedResponse("'files' is missing or not a list", str(preview))

    entries = []
    for position, item in enumerate(files):
        if not isinstance(item, Mapping):
            return MalformedResponse(f"files[{position}] is not an object", str(preview))
        path, content = item.get("path"), item.get("content")
        if not isinstance(path, str) or not path.strip():
            return MalformedResponse(f"files[{position}] has no valid 'path'", str(preview))
        if not isinstance(content, str) or not content:
            return MalformedResponse(f"files[{position}] ({path}) has no valid 'content'", str(preview))
        entries.append(FileEntry(path=path, content=content))

    texts = {}
    for key in ("aiSummary", "commitMessage", "summary"):
        value = data.get(key, "")
        if value is None:
            value = ""
        if not isinstance(value, str):
            return MalformedResponse(f"'{key}' must be a string", str(preview))
        texts[key] = value

    return ValidResponse(
        ai_summary=texts["aiSummary"],
        commit_message=texts["commitMessage"],
        summary=texts["summary"],
        files=entries,
    )
