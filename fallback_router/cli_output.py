from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import yaml


def write_cli_report(
    *,
    rendered: str,
    output_path: str | None,
    always_print: bool = False,
) -> None:
    if output_path:
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(rendered + "\n", encoding="utf-8")
    if always_print or not output_path:
        sys.stdout.write(rendered + "\n")


def render_yaml(payload: Any) -> str:
    return yaml.safe_dump(payload, sort_keys=False, allow_unicode=True).rstrip()


def render_json(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False)


def print_payload(payload: Any, *, as_json: bool = False) -> None:
    rendered = render_json(payload) if as_json else render_yaml(payload)
    sys.stdout.write(rendered + "\n")
