"""Per-performance variable store for captured correlation values."""

import re
import threading
from typing import Dict, List, Mapping, Optional

from virtuoso.logging_config import get_logger

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_.-]*)\s*\}\}")


def substitute(text: str, values: Mapping[str, str]) -> str:
    """Replace `{{name}}` placeholders for known names; unknown ones stay as written."""

    def _replace(match: re.Match) -> str:
        name = match.group(1)
        return values[name] if name in values else match.group(0)

    return _PLACEHOLDER.sub(_replace, text)


def placeholders(text: str) -> List[str]:
    """Names of the placeholders in `text`, in first-seen order."""
    names: List[str] = []
    for match in _PLACEHOLDER.finditer(text):
        if match.group(1) not in names:
            names.append(match.group(1))
    return names


class VariableStore:
    """Name to value mapping shared by the steps of one performance."""

    def __init__(self, defaults: Optional[Dict[str, str]] = None):
        self._values: Dict[str, str] = dict(defaults or {})
        self._lock = threading.RLock()
        self.logger = get_logger(__name__)

    def set(self, name: str, value: str) -> None:
        """Store a value; a redeclared name is overwritten with a warning."""
        with self._lock:
            previous = self._values.get(name)
            if previous is not None and previous != value:
                self.logger.warning(f"Variable '{name}' redeclared: '{previous}' -> '{value}'")
            self._values[name] = value

    def update(self, values: Dict[str, str]) -> None:
        for name, value in values.items():
            self.set(name, value)

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        with self._lock:
            return self._values.get(name, default)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._values

    def snapshot(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._values)

    def substitute(self, text: str) -> str:
        return substitute(text, self.snapshot())
