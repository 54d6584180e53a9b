from __future__ import annotations

import json
import re

from pydantic import ValidationError

from duocast_contracts.errors import InvalidOutputError
from duocast_contracts.podcast_job import Script

_SCRATCHPAD = re.compile(r"<scratchpad>.*?</scratchpad>", re.S | re.I)
_FENCE = re.compile(r"```(?:json)?", re.I)


def strip_reasoning(raw: str) -> str:
    """Drop scratchpad blocks and markdown fences the model may wrap around its JSON."""
    text = _SCRATCHPAD.sub("", raw)
    return _FENCE.sub("", text).strip()


def extract_json_object(text: str) -> str:
    """Return the first balanced {...} block, ignoring braces inside JSON strings."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for idx in range(start, len(text)):
            ch = text[idx]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start : idx + 1]
        # Unbalanced from this brace; try the next one.
        start = text.find("{", start + 1)
    raise InvalidOutputError("no JSON object found in model output")


def parse_script(raw: str, hosts: list[str]) -> Script:
    if not raw or not raw.strip():
        raise InvalidOutputError("empty response")
    body = extract_json_object(strip_reasoning(raw))
    try:
        data = json.loads(body)
    except json.JSONDecodeError as exc:
        raise InvalidOutputError(f"unparsable JSON: {exc}") from exc
    try:
        script = Script.model_validate(data)
    except ValidationError as exc:
        raise InvalidOutputError(f"script does not match the expected shape: {exc.errors()[0]['msg']}") from exc
    script = script.model_copy(
        update={"segments": [s.model_copy(update={"speaker": s.speaker.strip()}) for s in script.segments]}
    )
    script.ensure_valid(hosts)
    return script
