"""Named field transformations applied during mapping.

A rule is one of:
    "uppercase"                                   a transformation name
    {"name": "truncate", "args": [80]}            a name with arguments
    {"chain": ["trim", {"name": "truncate", "args": [80]}]}

A chain stops at the first transformation that returns None.
"""

import html
import re
from collections.abc import Callable
from datetime import date, datetime
from typing import Any

from work_item_sync.errors import UnknownTransformationError

STATUS_RULE = "status"

PRIORITY_TO_TEXT = {1: "Critical", 2: "High", 3: "Medium", 4: "Low"}
TEXT_TO_PRIORITY = {"critical": 1, "urgent": 1, "high": 2, "medium": 3, "normal": 3, "low": 4}

_TRUE_STRINGS = {"true", "1", "yes", "on"}


def _parse_date(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, datetime.min.time())
    try:
        return datetime.fromisoformat(str(value).strip())
    except ValueError:
        return None


def direct(value: Any) -> Any:
    return value


def uppercase(value: Any) -> str | None:
    return None if value is None else str(value).upper()


def lowercase(value: Any) -> str | None:
    return None if value is None else str(value).lower()


def trim(value: Any) -> str | None:
    return None if value is None else str(value).strip()


def to_number(value: Any) -> int | float | None:
    """Convert to int when the value is integral, float otherwise."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    try:
        number = float(str(value).strip())
    except ValueError:
        return None
    return int(number) if number.is_integer() else number


def to_string(value: Any) -> str | None:
    return None if value is None else str(value)


def to_boolean(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_STRINGS


def format_date_iso(value: Any) -> str | None:
    if value is None:
        return None
    parsed = _parse_date(value)
    return parsed.isoformat() if parsed else None


def format_date_short(value: Any) -> str | None:
    if value is None:
        return None
    parsed = _parse_date(value)
    return parsed.strftime("%Y-%m-%d") if parsed else None


def date_format(value: Any, pattern: str = "%Y-%m-%d") -> str | None:
    """Format a date with a strftime pattern."""
    if value is None:
        return None
    parsed = _parse_date(value)
    return parsed.strftime(pattern) if parsed else None


def email_to_username(value: Any) -> str | None:
    if value is None:
        return None
    email = str(value)
    local, sep, _ = email.partition("@")
    return local if sep and local else email


def replace(value: Any, search: str, replacement: str) -> str | None:
    """Replace every regex match of search."""
    if value is None:
        return None
    return re.sub(search, replacement, str(value))


def split(value: Any, delimiter: str = ",") -> list[str] | None:
    if value is None:
        return None
    return [part.strip() for part in str(value).split(delimiter)]


def truncate(value: Any, length: int) -> str | None:
    if value is None:
        return None
    return str(value)[: int(length)]


def strip_html(value: Any) -> str | None:
    if value is None:
        return None
    return re.sub(r"<[^>]*>", "", str(value))


def text_to_html(value: Any) -> str | None:
    if value is None:
        return None
    escaped = html.escape(str(value), quote=True).replace("&#x27;", "&#39;")
    return f"<p>{escaped.replace(chr(10), '<br>')}</p>"


def markdown_to_text(value: Any) -> str | None:
    """Basic markdown removal: headers, bold, italic, links, inline code."""
    if value is None:
        return None
    text = str(value)
    text = re.sub(r"#+\s", "", text)
    text = re.sub(r"\*\*(.+?)\*\*", r"\1", text)
    text = re.sub(r"\*(.+?)\*", r"\1", text)
    text = re.sub(r"\[(.+?)\]\(.+?\)", r"\1", text)
    return re.sub(r"`(.+?)`", r"\1", text)


def priority_to_text(value: Any) -> str | None:
    """Numeric priority (1-4) to label."""
    number = to_number(value)
    return PRIORITY_TO_TEXT.get(number) if number is not None else None


def text_to_priority(value: Any) -> int | None:
    """Priority label to number; unknown labels map to Medium."""
    if value is None:
        return None
    return TEXT_TO_PRIORITY.get(str(value).strip().lower(), 3)


def extract_project_from_path(value: Any) -> str | None:
    r"""First segment of an area/iteration path (``Project\Area`` -> ``Project``)."""
    if value is None:
        return None
    return str(value).split("\\")[0] or None


def replace_project_in_path(value: Any, new_project: str) -> str | None:
    if value is None:
        return None
    parts = str(value).split("\\")
    parts[0] = new_project
    return "\\".join(parts)


TRANSFORMATIONS: dict[str, Callable[..., Any]] = {
    "direct": direct,
    "none": direct,
    "uppercase": uppercase,
    "lowercase": lowercase,
    "trim": trim,
    "to_number": to_number,
    "to_string": to_string,
    "to_boolean": to_boolean,
    "format_date_iso": format_date_iso,
    "format_date_short": format_date_short,
    "date_format": date_format,
    "email_to_username": email_to_username,
    "replace": replace,
    "split": split,
    "truncate": truncate,
    "strip_html": strip_html,
    "text_to_html": text_to_html,
    "markdown_to_text": markdown_to_text,
    "priority_to_text": priority_to_text,
    "text_to_priority": text_to_priority,
    "extract_project_from_path": extract_project_from_path,
    "replace_project_in_path": replace_project_in_path,
}


def available_transformations() -> list[str]:
    return sorted([*TRANSFORMATIONS, STATUS_RULE])


def _resolve(rule: str | dict[str, Any]) -> tuple[Callable[..., Any], list[Any]]:
    if isinstance(rule, str):
        name, args = rule, []
    elif isinstance(rule, dict) and "name" in rule:
        name = rule["name"]
        args = rule.get("args") or []
        if not isinstance(args, list):
            args = [args]
    else:
        raise UnknownTransformationError(repr(rule))

    try:
        return TRANSFORMATIONS[name], args
    except KeyError:
        raise UnknownTransformationError(name) from None


def rule_names(rule: Any) -> list[str]:
    """Names referenced by a rule, chains flattened."""
    if rule is None:
        return []
    if isinstance(rule, str):
        return [rule]
    if isinstance(rule, dict) and "chain" in rule:
        return [name for step in rule["chain"] for name in rule_names(step)]
    if isinstance(rule, dict) and "name" in rule:
        return [rule["name"]]
    return [repr(rule)]


def is_status_rule(rule: Any) -> bool:
    return STATUS_RULE in rule_names(rule)


def apply_transformation(
    value: Any,
    rule: Any,
    status_lookup: Callable[[Any], Any] | None = None,
) -> Any:
    """Apply a transformation rule to a value.

    Args:
        value: Input value.
        rule: Rule as described in the module docstring; None means direct.
        status_lookup: Resolves the "status" rule; without it the status
            rule passes the value through.

    Returns:
        Transformed value, or None when a step yields nothing.

    Raises:
        UnknownTransformationError: If a rule names an unknown transformation.
    """
    if rule is None:
        return value
    if isinstance(rule, dict) and "chain" in rule:
        result = value
        for step in rule["chain"]:
            result = apply_transformation(result, step, status_lookup)
            if result is None:
                break
        return result
    if rule == STATUS_RULE or (isinstance(rule, dict) and rule.get("name") == STATUS_RULE):
        return status_lookup(value) if status_lookup else value

    func, args = _resolve(rule)
    return func(value, *args)
