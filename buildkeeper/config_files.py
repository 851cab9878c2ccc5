"""
Config File Editing
===================

Idempotent edits for the project files buildkeeper rewrites:
``key=value`` descriptors (gradle.properties, .env, ios/build.properties)
and JSON manifests (app.json).
"""

import json
import re
from pathlib import Path
from typing import Any, Mapping, Sequence

from buildkeeper.output import print_verbose


def upsert_line(content: str, key: str, value: Any) -> tuple[str, str]:
    """
    Replace the ``key=...`` line in ``content`` or append one.

    Returns:
        (new_content, action) where action is "updated", "added" or "unchanged"
    """
    line = f"{key}={value}"
    pattern = re.compile(rf"^{re.escape(key)}=.*$", re.MULTILINE)
    match = pattern.search(content)

    if match:
        if match.group(0) == line:
            return content, "unchanged"
        return content[:match.start()] + line + content[match.end():], "updated"

    if content and not content.endswith("\n"):
        content += "\n"
    return content + line + "\n", "added"


def upsert_properties(path: Path, changes: Mapping[str, Any]) -> dict[str, str]:
    """
    Apply ``key=value`` upserts to a descriptor file, creating it if needed.

    Re-running with the same changes leaves the file byte-identical.

    Args:
        path: File to edit
        changes: Keys and values to set

    Returns:
        Mapping of key -> action taken
    """
    path = Path(path)
    content = path.read_text(encoding="utf-8") if path.exists() else ""

    actions = {}
    for key, value in changes.items():
        content, actions[key] = upsert_line(content, key, value)
        if actions[key] != "unchanged":
            print_verbose(f"{actions[key].capitalize()} {key} in {path.name}")

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return actions


def read_properties(path: Path) -> dict[str, str]:
    """Parse a ``key=value`` file, skipping blanks and # comments."""
    props = {}
    if not Path(path).exists():
        return props
    for raw in Path(path).read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        props[key.strip()] = value.strip()
    return props


_MISSING = object()


def set_json_value(path: Path, key_path: Sequence[str], value: Any = _MISSING) -> bool:
    """
    Set (or, with no value, delete) a nested key in a JSON file.

    Intermediate objects are created as needed. The file is only rewritten
    when something changed.

    Returns:
        True if the file was modified
    """
    path = Path(path)
    data = json.loads(path.read_text(encoding="utf-8"))

    node = data
    for key in key_path[:-1]:
        if not isinstance(node.get(key), dict):
            if value is _MISSING:
                return False
            node[key] = {}
        node = node[key]

    leaf = key_path[-1]
    if value is _MISSING:
        if leaf not in node:
            return False
        del node[leaf]
    else:
        if node.get(leaf, _MISSING) == value:
            return False
        node[leaf] = value

    path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
    return True


def delete_json_value(path: Path, key_path: Sequence[str]) -> bool:
    """Remove a nested key from a JSON file if present."""
    return set_json_value(path, key_path)
