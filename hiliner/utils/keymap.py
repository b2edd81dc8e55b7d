"""Keymap help: built-in and custom bindings grouped for display."""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional

import jinja2
import structlog

if TYPE_CHECKING:
    from ..actions.registry import ActionRegistry


logger = structlog.get_logger(__name__)

CATEGORY_ORDER = ["navigation", "selection", "file", "view", "help", "custom", "general"]

KEY_SYMBOLS = {
    " ": "Space",
    "space": "Space",
    "arrowup": "↑",
    "arrowdown": "↓",
    "arrowleft": "←",
    "arrowright": "→",
    "pageup": "PgUp",
    "pagedown": "PgDn",
    "tab": "Tab",
    "shift+tab": "Shift+Tab",
}

KEYMAP_TEMPLATE = """\
HILINER KEYMAP
Total: {{ total_builtin }} built-in, {{ total_custom }} custom actions

{% if conflicts %}
KEY CONFLICTS
{{ "-" * 50 }}
{% for conflict in conflicts %}
{{ conflict }}
{% endfor %}

{% endif %}
{% for title, rows in sections %}
{{ title }} {{ "-" * (50 - title|length) }}
{% for keys, description in rows %}
{{ keys }} | {{ description }}
{% endfor %}

{% endfor %}
"""


@dataclass
class KeymapEntry:
    key: str
    name: str
    description: str
    category: str
    builtin: bool
    alternative_keys: List[str] = field(default_factory=list)
    source: Optional[str] = None


@dataclass
class KeymapHelp:
    """Keymap entries grouped by category, in display order."""

    categories: Dict[str, List[KeymapEntry]]
    total_builtin: int
    total_custom: int
    conflicts: List[str] = field(default_factory=list)


def format_key(key: str) -> str:
    return KEY_SYMBOLS.get(key.lower(), key)


def generate_keymap_help(
    registry: "ActionRegistry",
    sources: Optional[Dict[str, str]] = None,
) -> KeymapHelp:
    """Collect every binding known to the registry.

    Args:
        registry: Registry to describe
        sources: Optional action id -> configuration file mapping

    Returns:
        KeymapHelp with categories ordered for display
    """
    sources = sources or {}
    grouped: Dict[str, List[KeymapEntry]] = {}
    builtin_keys = set()
    conflicts: List[str] = []
    total_builtin = 0
    total_custom = 0

    for action in registry.builtin_actions:
        if not registry.is_builtin(action.id):
            continue
        builtin_keys.update(action.all_keys())
        grouped.setdefault(action.category or "general", []).append(KeymapEntry(
            key=action.key,
            name=action.display_name,
            description=action.description or "Built-in action",
            category=action.category or "general",
            builtin=True,
            alternative_keys=list(action.alternative_keys),
        ))
        total_builtin += 1

    for action in registry.custom_actions:
        for key in action.all_keys():
            if key in builtin_keys:
                conflicts.append(
                    f"Key '{format_key(key)}' conflicts between built-in and custom action '{action.id}'"
                )
        grouped.setdefault(action.category or "custom", []).append(KeymapEntry(
            key=action.key,
            name=action.display_name,
            description=action.description or "Custom action",
            category=action.category or "custom",
            builtin=False,
            alternative_keys=list(action.alternative_keys),
            source=sources.get(action.id),
        ))
        total_custom += 1

    ordered = [name for name in CATEGORY_ORDER if name in grouped]
    ordered += [name for name in grouped if name not in CATEGORY_ORDER]
    categories = {
        name: sorted(grouped[name], key=lambda entry: entry.key)
        for name in ordered
    }

    return KeymapHelp(
        categories=categories,
        total_builtin=total_builtin,
        total_custom=total_custom,
        conflicts=conflicts,
    )


def format_keymap_help(help: KeymapHelp) -> str:
    """Render the keymap as aligned plain text."""
    sections = []
    for name, entries in help.categories.items():
        keys = [
            ", ".join(format_key(key) for key in [entry.key, *entry.alternative_keys])
            for entry in entries
        ]
        width = max([12, *(len(k) for k in keys)])
        rows = []
        for key_text, entry in zip(keys, entries):
            description = f"{entry.name} - {entry.description}"
            if entry.source:
                description += f" ({entry.source})"
            rows.append((key_text.ljust(width), description))
        sections.append((name.upper(), rows))

    template = jinja2.Template(KEYMAP_TEMPLATE, trim_blocks=True, lstrip_blocks=True)
    text = template.render(
        total_builtin=help.total_builtin,
        total_custom=help.total_custom,
        conflicts=help.conflicts,
        sections=sections,
    )
    return text.rstrip("\n") + "\n"


def keymap_summary(help: KeymapHelp) -> str:
    total = help.total_builtin + help.total_custom
    conflicts = f" ({len(help.conflicts)} conflicts)" if help.conflicts else ""
    return f"{total} actions: {help.total_builtin} built-in, {help.total_custom} custom{conflicts}"
