"""Structured front-matter documents and markdown section helpers."""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml

from .errors import ConsistencyError

DELIMITER = "---"

_LINK_RE = re.compile(r"\[\[([^\]|#]+)(?:#[^\]|]*)?(?:\|[^\]]*)?\]\]")


@dataclass
class Document:
    """A markdown artifact: a YAML front-matter map plus a body.

    Parse once, mutate the map, render again. The body is kept verbatim so
    automated edits never touch text they do not own.
    """

    frontmatter: Dict[str, Any] = field(default_factory=dict)
    body: str = ""

    @classmethod
    def parse(cls, text: str) -> "Document":
        lines = text.split("\n")
        if not lines or lines[0].strip() != DELIMITER:
            return cls({}, text)

        for i in range(1, len(lines)):
            if lines[i].strip() == DELIMITER:
                raw = "\n".join(lines[1:i])
                body = "\n".join(lines[i + 1 :])
                break
        else:
            return cls({}, text)

        try:
            data = yaml.safe_load(raw) if raw.strip() else {}
        except yaml.YAMLError as e:
            raise ConsistencyError("Front-matter is not valid YAML", detail=str(e))
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConsistencyError("Front-matter is not a mapping")

        if body.startswith("\r\n"):
            body = body[2:]
        elif body.startswith("\n"):
            body = body[1:]
        return cls(data, body)

    def render(self) -> str:
        if not self.frontmatter:
            return self.body
        header = yaml.safe_dump(
            self.frontmatter, sort_keys=False, allow_unicode=True, default_flow_style=None
        )
        return f"{DELIMITER}\n{header}{DELIMITER}\n\n{self.body}"

    def get(self, key: str, default: Any = None) -> Any:
        return self.frontmatter.get(key, default)

    @property
    def type(self) -> Optional[str]:
        value = self.frontmatter.get("type")
        return str(value) if value is not None else None

    @property
    def status(self) -> Optional[str]:
        value = self.frontmatter.get("status")
        return str(value) if value is not None else None

    @property
    def job_id(self) -> Optional[str]:
        value = self.frontmatter.get("job_id")
        if value is None or value == "":
            return None
        return str(value)

    @property
    def source(self) -> Optional[str]:
        """Name of the artifact this one was derived from, if any."""
        for key in ("source", "source_file"):
            name = parse_wikilink(self.frontmatter.get(key))
            if name:
                return name
        return None


def wikilink(name: str) -> str:
    return f"[[{name}]]"


def parse_wikilink(value: Any) -> Optional[str]:
    """Return the target of a ``[[name]]`` value.

    Unquoted ``[[name]]`` in hand-written YAML loads as a nested list, so
    that shape is accepted as well.
    """
    while isinstance(value, list) and len(value) == 1:
        value = value[0]
    if not isinstance(value, str):
        return None
    value = value.strip().strip('"')
    match = _LINK_RE.search(value)
    if match:
        return match.group(1).strip()
    return value or None


def extract_links(text: Optional[str]) -> List[str]:
    if not text:
        return []
    return [m.group(1).strip() for m in _LINK_RE.finditer(text)]


def _is_heading(line: str, max_level: int = 2) -> bool:
    stripped = line.lstrip()
    if not stripped.startswith("#"):
        return False
    hashes = len(stripped) - len(stripped.lstrip("#"))
    return hashes <= max_level and stripped[hashes : hashes + 1] == " "


def _find_section(lines: List[str], heading: str) -> Optional[int]:
    target = f"## {heading}"
    for i, line in enumerate(lines):
        if line.rstrip() == target:
            return i
    return None


def _section_end(lines: List[str], start: int, stop_at_rule: bool) -> int:
    for j in range(start + 1, len(lines)):
        if _is_heading(lines[j]) or (stop_at_rule and lines[j].strip() == DELIMITER):
            return j
    return len(lines)


def get_section(body: str, heading: str, stop_at_rule: bool = False) -> Optional[str]:
    """Content under ``## heading`` up to the next level 1-2 heading."""
    lines = body.split("\n")
    start = _find_section(lines, heading)
    if start is None:
        return None
    end = _section_end(lines, start, stop_at_rule)
    return "\n".join(lines[start + 1 : end]).strip()


def add_to_section(body: str, heading: str, line: str) -> str:
    """Insert ``line`` directly under ``## heading``, creating the section at the end."""
    lines = body.split("\n")
    start = _find_section(lines, heading)
    if start is None:
        if body and not body.endswith("\n"):
            body += "\n"
        return f"{body}\n## {heading}\n{line}\n"
    lines.insert(start + 1, line)
    return "\n".join(lines)


def remove_section(body: str, heading: str) -> str:
    lines = body.split("\n")
    start = _find_section(lines, heading)
    if start is None:
        return body
    end = _section_end(lines, start, stop_at_rule=False)
    return "\n".join(lines[:start] + lines[end:])
