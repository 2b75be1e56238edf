"""Script metadata parsing from comment lines."""

COMMENT_MARKER = "#"
SHEBANG_PREFIX = "#!"

NO_DESCRIPTION = "No description available"
UNREADABLE_DESCRIPTION = "Unable to read file content"

# Descriptions of this length or shorter are treated as noise (e.g. "# --")
MIN_DESCRIPTION_LENGTH = 3


def _comment_text(line: str) -> str | None:
    """Return the text after the comment marker, or None for non-comments."""
    stripped = line.strip()
    if not stripped.startswith(COMMENT_MARKER):
        return None
    return stripped[len(COMMENT_MARKER):].strip()


def parse_description(content: str) -> str:
    """
    Extract a description from script comments.

    The first comment line that is not a shebang and has more than
    MIN_DESCRIPTION_LENGTH characters wins.

    Args:
        content: Full script content

    Returns:
        Description text, or NO_DESCRIPTION
    """
    for line in content.split("\n"):
        if line.strip().startswith(SHEBANG_PREFIX):
            continue
        text = _comment_text(line)
        if text and len(text) > MIN_DESCRIPTION_LENGTH:
            return text
    return NO_DESCRIPTION


def parse_tags(content: str) -> list[str]:
    """
    Extract tags from comment lines such as "# Tags: build, release".

    Args:
        content: Full script content

    Returns:
        Tags in order of first appearance, without duplicates or empties
    """
    tags: list[str] = []
    for line in content.split("\n"):
        text = _comment_text(line)
        if text is None or not text.lower().startswith("tag"):
            continue

        parts = text.split(":")
        if len(parts) < 2:
            continue

        for piece in parts[1].split(","):
            tag = piece.strip()
            if tag and tag not in tags:
                tags.append(tag)

    return tags
