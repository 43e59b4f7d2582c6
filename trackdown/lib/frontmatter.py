"""
YAML frontmatter codec for item files.

An item file looks like:

    ---
    issue_id: ISS-0001
    title: Fix login
    ---

    Body text in Markdown.
"""

import re
from datetime import date, datetime

import yaml

FRONTMATTER_RE = re.compile(r"^---\s*\n(.*?)\n---\s*\n(.*)$", re.DOTALL)


class FrontmatterError(ValueError):
    """Text is not a valid frontmatter document."""


def _normalize(value):
    """Convert YAML-native dates back to ISO strings, recursively."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _normalize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_normalize(v) for v in value]
    return value


def _clean(value):
    """Drop None values so they never reach the file."""
    if isinstance(value, dict):
        return {k: _clean(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [_clean(v) for v in value if v is not None]
    return value


def parse(text: str) -> tuple[dict, str]:
    """Split a document into (frontmatter dict, body).

    Raises:
        FrontmatterError: Missing delimiters, invalid YAML, or a
            frontmatter block that is not a mapping.
    """
    # Files saved on Windows still parse
    text = text.replace("\r\n", "\n")
    match = FRONTMATTER_RE.match(text)
    if not match:
        raise FrontmatterError("missing frontmatter delimiters")

    try:
        data = yaml.safe_load(match.group(1))
    except yaml.YAMLError as e:
        raise FrontmatterError(f"invalid YAML: {e}") from None

    if not isinstance(data, dict):
        raise FrontmatterError("frontmatter must be a mapping")

    return _normalize(data), match.group(2).strip()


def dump(data: dict, body: str) -> str:
    """Serialize frontmatter and body back to file text."""
    yaml_text = yaml.safe_dump(
        _clean(data),
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
        width=120,
    )
    return f"---\n{yaml_text}---\n\n{body.strip()}\n"
