"""
Sandboxed template resolution engine.

Resolves {{ variable }} and {{ nested.path }} syntax against execution
bindings without eval/exec. Unresolved placeholders are left verbatim.
"""

import json
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Mapping, Optional


class _Missing:
    """Sentinel for a path that does not resolve."""

    _instance: Optional["_Missing"] = None

    def __new__(cls) -> "_Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


def stringify(value: Any) -> str:
    """
    Convert a bound value to the text used in templates and string operators.

    None and MISSING become "", booleans "true"/"false", integral floats drop
    the ".0", dicts and lists are JSON, dates are ISO 8601.
    """
    if value is None or value is MISSING:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str)
    return str(value)


def navigate_path(value: Any, path: list[str]) -> Any:
    """
    Navigate a dotted path through nested data structures.

    Only dict keys and list indices are followed; attribute access is never
    used. Returns MISSING when any segment does not resolve.
    """
    current = value

    for key in path:
        if isinstance(current, Mapping):
            if key not in current:
                return MISSING
            current = current[key]
        elif isinstance(current, (list, tuple)) and key.lstrip("-").isdigit():
            index = int(key)
            if not -len(current) <= index < len(current):
                return MISSING
            current = current[index]
        else:
            return MISSING

    return current


def lookup(path: str, *scopes: Mapping[str, Any]) -> Any:
    """
    Resolve a field name against scopes in order.

    A literal key wins over a dotted path within the same scope. Presence,
    not truthiness, decides: a bound None or 0 is returned as-is.
    """
    for scope in scopes:
        if not scope:
            continue
        if path in scope:
            return scope[path]
        if "." in path:
            value = navigate_path(scope, path.split("."))
            if value is not MISSING:
                return value
    return MISSING


@dataclass
class TemplateReference:
    """Represents a parsed template reference."""

    full_match: str
    path: str
    start_pos: int
    end_pos: int


class TemplateResolver:
    """
    Resolves template expressions against execution bindings.

    Supports:
    - {{ name }} - a variable or trigger payload field
    - {{ client.email }} - nested dict keys
    - {{ items.0.sku }} - list indices

    Variables are consulted before the trigger payload.
    """

    # Pattern to match {{ reference }}
    TEMPLATE_PATTERN = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")

    def __init__(
        self,
        variables: Mapping[str, Any],
        trigger_data: Optional[Mapping[str, Any]] = None,
    ):
        self.variables = variables
        self.trigger_data = trigger_data or {}

    def lookup(self, path: str) -> Any:
        return lookup(path, self.variables, self.trigger_data)

    def find_references(self, template: str) -> list[TemplateReference]:
        """Find all template references in a string."""
        return [
            TemplateReference(
                full_match=match.group(0),
                path=match.group(1).strip(),
                start_pos=match.start(),
                end_pos=match.end(),
            )
            for match in self.TEMPLATE_PATTERN.finditer(template)
        ]

    def render(self, template: str) -> str:
        """Replace every resolvable placeholder with its stringified value."""
        if not isinstance(template, str) or "{{" not in template:
            return template

        def replace(match: re.Match) -> str:
            value = self.lookup(match.group(1).strip())
            if value is MISSING:
                return match.group(0)
            return stringify(value)

        return self.TEMPLATE_PATTERN.sub(replace, template)

    def resolve(self, value: Any, preserve_types: bool = False) -> Any:
        """
        Resolve template expressions in a value.

        Handles strings, dicts and lists recursively. With preserve_types, a
        string that is exactly one placeholder resolves to the raw bound value
        instead of its text.
        """
        if isinstance(value, str):
            if preserve_types:
                references = self.find_references(value)
                if len(references) == 1 and references[0].full_match == value.strip():
                    resolved = self.lookup(references[0].path)
                    if resolved is not MISSING:
                        return resolved
            return self.render(value)
        if isinstance(value, dict):
            return {k: self.resolve(v, preserve_types) for k, v in value.items()}
        if isinstance(value, list):
            return [self.resolve(v, preserve_types) for v in value]
        return value


def render_template(
    template: str,
    variables: Mapping[str, Any],
    trigger_data: Optional[Mapping[str, Any]] = None,
) -> str:
    """Convenience wrapper for one-off string rendering."""
    return TemplateResolver(variables, trigger_data).render(template)
