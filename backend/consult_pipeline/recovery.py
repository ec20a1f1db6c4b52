from __future__ import annotations

import json
import re
from typing import Any

from .errors import MalformedStructured, NotStructured

_TRAILING_COMMA_RE = re.compile(r",\s*}")


def repair_json_text(text: str) -> str:
    """Apply the fixed repair sequence to near-JSON text.

    1. close a single unterminated object
    2. drop commas that directly precede a closing brace
    """
    fixed = text.rstrip()
    if "{" in fixed and not fixed.endswith("}"):
        fixed += "}"
    return _TRAILING_COMMA_RE.sub("}", fixed)


def recover_json(raw_text: str) -> dict[str, Any]:
    if not raw_text.lstrip().startswith("{"):
        raise NotStructured(raw_text)

    try:
        payload = json.loads(raw_text)
    except RecursionError as exc:
        raise MalformedStructured(raw_text, "nesting too deep") from exc
    except ValueError:
        try:
            payload = json.loads(repair_json_text(raw_text))
        except (ValueError, RecursionError) as exc:
            raise MalformedStructured(raw_text, str(exc) or type(exc).__name__) from exc

    if not isinstance(payload, dict):
        raise MalformedStructured(raw_text, "top-level value is not an object")
    return payload
