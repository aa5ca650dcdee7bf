from __future__ import annotations

import contextlib
import json
from pathlib import Path
from typing import Any, Protocol
from uuid import uuid4


class ConfigurationBackend(Protocol):
    def load(self, *, default: Any = None) -> Any: ...

    def write(self, payload: Any) -> None: ...


class JsonFileStore:
    """JSON document persistence with atomic write support."""

    def __init__(self, path: str | Path, *, indent: int = 2):
        self.path = Path(path).expanduser()
        self.indent = indent

    def exists(self) -> bool:
        return self.path.exists()

    def load(self, *, default: Any = None) -> Any:
        if not self.path.exists():
            return default
        text = self.path.read_text(encoding="utf-8")
        if not text.strip():
            return default
        return json.loads(text)

    def write(self, payload: Any, *, atomic: bool = True) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        rendered = json.dumps(payload, indent=self.indent, ensure_ascii=False) + "\n"
        if not atomic:
            self.path.write_text(rendered, encoding="utf-8")
            return

        temp_path = self._temp_path()
        try:
            temp_path.write_text(rendered, encoding="utf-8")
            temp_path.replace(self.path)
        except Exception:
            with contextlib.suppress(Exception):
                temp_path.unlink(missing_ok=True)
            raise

    def _temp_path(self) -> Path:
        token = uuid4().hex
        return self.path.with_name(f".{self.path.name}.{token}.tmp")


class InMemoryStore:
    """Backend that keeps the last written payload in memory only."""

    def __init__(self, payload: Any = None):
        self.payload = payload
        self.writes = 0

    def load(self, *, default: Any = None) -> Any:
        if self.payload is None:
            return default
        return json.loads(json.dumps(self.payload))

    def write(self, payload: Any) -> None:
        self.payload = json.loads(json.dumps(payload))
        self.writes += 1
