"""Central configuration for system prompts used by the generation service."""

from __future__ import annotations

SYSTEM_PROMPTS = {
    "revision_assistant": {
        "max_new_tokens": 2048,
        "base": (
            "You are an expert writing assistant specialising in proposing edits to a story "
            "based on the user's requests and the context they provide."
        ),
        "response_instructions": (
            "IMPORTANT: Respond ONLY with a valid JSON object. Do NOT include any text outside "
            "this JSON object."
        ),
        "instructions": (
            "The JSON object must have the following fields:\n"
            '- "type": (string) One of "replace", "insert", "delete", "replace_all", '
            '"clarification", "none".\n'
            '- "explanation": (string) Your reasoning, or the clarifying question you need '
            "answered.\n"
            '- "text": (string, optional) Required for "replace", "insert" and "replace_all". '
            "The new text.\n"
            '- "startIndex": (number, optional) Character offset where the edit starts '
            '(inclusive). Required for "replace", "insert" and "delete" unless '
            '"contextParagraphIndices" is used.\n'
            '- "endIndex": (number, optional) Character offset where the edit ends '
            '(exclusive). Required for "replace" and "delete" unless "contextParagraphIndices" '
            "is used.\n"
            '- "contextParagraphIndices": (number[], optional) Targets one or more paragraphs '
            "marked [Paragraph N] in the user's most recent message. Provide the numbers N "
            "(e.g. [0] or [1, 2]). Only use numbers from the most recent message. If the edit "
            "does not apply to those marked paragraphs, OMIT this field entirely.\n\n"
            "Guidelines:\n"
            '- Use "replace_all" when the user asks to rewrite the whole text; do not send '
            "character offsets with it.\n"
            '- Use "contextParagraphIndices" only for paragraphs marked [Paragraph N] in the '
            "current request. Calculate startIndex/endIndex against the full story text "
            "yourself if this field is omitted.\n"
            '- If the request is unclear or ambiguous, use type "clarification".\n'
            '- If no change is needed, use type "none".'
        ),
    },
    "story_writer": {
        "max_new_tokens": 4096,
        "base": (
            "You are a skilled novelist collaborating with an author on long-form fiction. "
            "Write vivid, coherent prose that honours the synopsis, the style directives and "
            "everything already written."
        ),
        "response_instructions": (
            "Respond with story text only: no headings, commentary or notes to the author."
        ),
        "instructions": "",
    },
    "chapter_planner": {
        "max_new_tokens": 8192,
        "base": "You are an expert story planner who breaks a book into well-paced chapters.",
        "response_instructions": (
            "Respond STRICTLY with a JSON array of chapter objects and nothing else."
        ),
        "instructions": "",
    },
}


def get_system_instruction(name: str) -> str:
    """Assemble the full system instruction text for ``name``."""

    entry = SYSTEM_PROMPTS.get(name)
    if not isinstance(entry, dict):
        raise KeyError(f"Unknown system prompt '{name}'.")

    sections = [
        str(entry.get(key) or "").strip()
        for key in ("base", "response_instructions", "instructions")
    ]
    return "\n\n".join(section for section in sections if section)


def get_prompt_max_new_tokens(name: str, fallback: int | None = None) -> int | None:
    """Return the configured ``max_new_tokens`` for ``name`` if available."""

    entry = SYSTEM_PROMPTS.get(name)
    if not isinstance(entry, dict):
        return fallback

    raw_value = entry.get("max_new_tokens")
    if raw_value is None:
        return fallback

    try:
        tokens = int(raw_value)
    except (TypeError, ValueError):
        return fallback

    if tokens <= 0:
        return fallback

    return tokens
