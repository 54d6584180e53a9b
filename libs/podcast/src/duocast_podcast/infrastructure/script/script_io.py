from __future__ import annotations

from pathlib import Path

from pydantic import ValidationError

from duocast_contracts.errors import InvalidOutputError
from duocast_contracts.podcast_job import Script


def save_script(script: Script, path: Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(script.model_dump_json(indent=2), encoding="utf-8")
    return path


def load_script(path: Path) -> Script:
    """Load a (possibly hand-edited) script. Speakers are checked later against the voice assignment."""
    try:
        script = Script.model_validate_json(Path(path).read_text(encoding="utf-8"))
    except ValidationError as exc:
        raise InvalidOutputError(f"invalid script file {path}: {exc.errors()[0]['msg']}") from exc
    if not script.segments:
        raise InvalidOutputError(f"script file {path} has no segments")
    return script
