from typing import Optional


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def build_selector(labels: dict[str, str]) -> str:
    """Stream selector from exact-match labels: {"level": "INFO"} -> {level="INFO"}."""
    if not labels:
        raise ValueError("a LogQL stream selector needs at least one label matcher")
    matchers = ", ".join(f'{key}="{_escape(value)}"' for key, value in labels.items())
    return "{" + matchers + "}"


def line_filter(text: str) -> str:
    """Line-contains filter. Backticks avoid escaping unless the text has one itself."""
    if "`" not in text:
        return f"|= `{text}`"
    return f'|= "{_escape(text)}"'


def build_logql(labels: dict[str, str], filters: Optional[list[str]] = None) -> str:
    """Build a LogQL expression with stream selector and line filters."""
    selector = build_selector(labels)
    non_empty = [f for f in (filters or []) if f]
    if not non_empty:
        return selector
    return f"{selector} " + " ".join(line_filter(f) for f in non_empty)
