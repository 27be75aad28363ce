"""Assemble the per-turn prompt sent to the completion model."""

NO_HISTORY = "No recent history yet"
NO_SUMMARY = "No prior summary available"
UNKNOWN_EDUCATION_LEVEL = "not specified"


def build_prompt(
    education_level: str | None,
    recent_history: str,
    summary: str,
    context: str,
    message: str,
    page_number: int | None = None,
    page_content: str | None = None,
) -> str:
    """Compose the prompt in a fixed section order.

    Education level, recent history and older summary are always present,
    with placeholders when empty. Document context and the page-focus block
    are left out entirely when there is nothing to show. The user's query is
    always last.
    """
    sections = [
        f"User education level: {education_level or UNKNOWN_EDUCATION_LEVEL}",
        f"recent chat history:\n{recent_history or NO_HISTORY}",
        f"older chat summary:\n{summary or NO_SUMMARY}",
    ]
    if context:
        sections.append(f"Extracted context from user uploaded document(s):\n{context}")
    if page_number and page_content:
        sections.append(
            f"User is currently viewing page {page_number} which contains the following "
            f"content:\n{page_content}"
        )
    sections.append(f"User Query: {message}")
    return "\n\n".join(sections)
