# core/prompts.py - System instructions and request payloads for site generation

import textwrap
from typing import Any, Dict, List, Optional, Sequence

from .errors import InvalidAttachment
from .state_models import Attachment, FileEntry, Learning, Project

DEFAULT_DESCRIPTION = "A new website project."
NO_LEARNINGS_TEXT = "No specific learnings in the knowledge base yet."

FULL_GENERATION_TEMPLATE = textwrap.dedent("""
    You are a world-class AI web developer. You build complete, multi-page and interactive
    websites from a single prompt, ready for production and pleasant to look at.

    **PROJECT DETAILS:**
    - Project Name: "{project_name}"
    - Project Description: "{project_description}"

    **LEARNINGS FROM PAST INTERACTIONS:**
    Use these principles to guide your design choices.
    {learnings_section}

    **DESIGN REQUIREMENTS:**
    1. Pick a modern, harmonious color palette (primary, secondary and accent colors) that fits the theme
    2. Create a unique inline SVG logo relevant to the project name
    3. Care about typography, spacing and visual hierarchy
    4. Every page must be fully responsive (use Tailwind's `md:` and `lg:` prefixes)

    **TECHNICAL TOOLKIT:**
    - Styling: Tailwind CSS utility classes only, loaded in `index.html` with
      `<script src="https://cdn.tailwindcss.com"></script>`. Do not use component libraries.
    - Simple interactions: Alpine.js (`<div x-data="{{ open: false }}">`).
    - Dynamic content without reloads: htmx (`hx-get`, `hx-target`, `hx-swap`).
    - Complex stateful UIs: React through ES modules and `React.createElement` (no JSX, no build step).
      `index.html` holds `<div id="root"></div>` and `<script type="module" src="/main.js"></script>`;
      `main.js` renders `App` from `./App.js`.

    **WEBSITE STRUCTURE (choose one):**
    a) Multi-page static site: several HTML files linked with `<a>` tags and a shared layout
    b) htmx site: `index.html` with a main content area, other HTML files hold page fragments
    c) React single-page application: one component per JS file

    **CRITICAL OUTPUT REQUIREMENT:**
    Fill the site with professional placeholder copy. You MUST respond with ONLY a valid JSON object,
    no markdown, with the keys "aiSummary", "commitMessage", "summary" and "files". Each item of
    "files" has "path" and "content" keys, and every "content" string must be properly escaped.
""").strip()

MODIFICATION_TEMPLATE = textwrap.dedent("""
    You are an expert AI web developer. The user wants to modify an existing website. Make precise
    changes to the provided files based on the user's prompt.

    **LEARNINGS FROM PAST INTERACTIONS:**
    Use these principles to guide your changes.
    {learnings_section}

    **WEBSITE STACK:**
    The site uses Tailwind CSS, and Alpine.js, htmx or React (ES modules with React.createElement)
    for interactivity. Keep using whatever the existing files use.

    **MODIFICATION RULES:**
    1. Surgical precision: change only what the user asked for
    2. Respect the stack: do not introduce a new library unless explicitly asked
    3. Preserve the existing design: colors, fonts and spacing stay unless told otherwise
    4. Targeted edits, not regeneration: do not rewrite or refactor whole files

    **CRITICAL OUTPUT REQUIREMENT:**
    Respond with ONLY a JSON object, no markdown, with the keys "aiSummary", "commitMessage",
    "summary" and "files". Return the full content of every file you modify. Do not include
    files you did not modify.
""").strip()

RESPONSE_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "aiSummary": {
            "type": "STRING",
            "description": "A short summary of the plan before making changes.",
        },
        "commitMessage": {
            "type": "STRING",
            "description": "A short, git-style commit message, e.g. 'feat: Create initial landing page'.",
        },
        "summary": {
            "type": "STRING",
            "description": "A detailed summary of the changes that were made.",
        },
        "files": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "path": {"type": "STRING", "description": "Full path of the file, e.g. index.html."},
                    "content": {"type": "STRING", "description": "The complete source code of the file."},
                },
                "required": ["path", "content"],
            },
        },
    },
    "required": ["aiSummary", "commitMessage", "summary", "files"],
}


def format_learnings(learnings: Sequence[Learning]) -> str:
    if not learnings:
        return NO_LEARNINGS_TEXT
    lines = "\n".join(f"- {learning.content}" for learning in learnings)
    return f"Here are some learnings to consider:\n{lines}"


def build_system_instruction(project: Project, learnings: Sequence[Learning]) -> str:
    """Pick the template for the request mode and interpolate project details and learnings."""
    learnings_section = format_learnings(learnings)
    if project.files:
        return MODIFICATION_TEMPLATE.format(learnings_section=learnings_section)
    return FULL_GENERATION_TEMPLATE.format(
        project_name=project.name,
        project_description=project.description or DEFAULT_DESCRIPTION,
        learnings_section=learnings_section,
    )


def serialize_files(files: Sequence[FileEntry]) -> str:
    return "\n\n".join(
        f"--- START OF FILE: {entry.path} ---\n```\n{entry.content}\n```\n--- END OF FILE: {entry.path} ---"
        for entry in files
    )


def build_prompt_parts(project: Project, prompt: str,
                       attachment: Optional[Attachment] = None) -> List[Dict[str, Any]]:
    """
    Build the user content for the AI request. In modification mode every current
    file travels with the prompt; a fresh project only sends the prompt itself.
    """
    if project.files:
        text = (f"Here are the current files of the website:\n{serialize_files(project.files)}\n\n"
                f"Now, please apply the following change based on my request: \"{prompt}\"")
    else:
        text = prompt

    parts: List[Dict[str, Any]] = [{"text": text}]
    if attachment is not None:
        data = attachment.base64_data
        if not data:
            raise InvalidAttachment()
        parts.append({"inline_data": {"mime_type": attachment.mime_type, "data": data}})
    return parts
