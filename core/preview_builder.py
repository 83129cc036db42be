# core/preview_builder.py - Single-document preview of a generated file set

import logging
import re
from typing import Dict, Sequence

from .state_models import FileEntry

logger = logging.getLogger(__name__)

MISSING_INDEX_DOCUMENT = (
    '<html><body><div style="font-family: sans-serif; color: #555; text-align: center; padding-top: 50px;">'
    '<h1>index.html not found</h1><p>The AI did not generate an index.html file.</p></div></body></html>'
)

_MODULE_SCRIPT = re.compile(r'<script type="module"[^>]+src="([^"]+)"[^>]*>(?:</script>)?')
_STYLESHEET_LINK = re.compile(r'<link[^>]+href="([^"]+\.css)"[^>]*>')


def _clean_path(path: str) -> str:
    if path.startswith("./"):
        return path[2:]
    return path.lstrip("/")


def build_preview_document(files: Sequence[FileEntry]) -> str:
    """
    Inline module scripts and stylesheets referenced by ``index.html`` so the
    site can be shown from one document. References to files that do not exist
    are left as they are. Imports inside scripts are not bundled.
    """
    by_path: Dict[str, str] = {entry.path: entry.content for entry in files}
    index = by_path.get("index.html")
    if index is None:
        return MISSING_INDEX_DOCUMENT

    def inline_script(match: re.Match) -> str:
        source = by_path.get(_clean_path(match.group(1)))
        if source is None:
            return match.group(0)
        return f'<script type="module">{source}</script>'

    def inline_stylesheet(match: re.Match) -> str:
        css = by_path.get(_clean_path(match.group(1)))
        if css is None:
            return match.group(0)
        return f"<style>{css}</style>"

    document = _MODULE_SCRIPT.sub(inline_script, index)
    document = _STYLESHEET_LINK.sub(inline_stylesheet, document)
    return document
