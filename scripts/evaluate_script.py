#!/usr/bin/env python
"""
Review a saved script against the quality checks used before synthesis.
Prints the issues as JSON; exits non-zero when any error-level issue is found.
"""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from duocast_contracts.podcast_job import Duration, ScriptOptions
from duocast_podcast.application.review import review_script
from duocast_podcast.infrastructure.script.script_io import load_script


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("script_json", type=Path, help="Path to a saved script JSON.")
    ap.add_argument("--duration", choices=[d.value for d in Duration], default=Duration.STANDARD.value)
    args = ap.parse_args()

    script = load_script(args.script_json)
    hosts = script.speakers()
    issues = review_script(script, ScriptOptions(duration=Duration(args.duration), speakers=max(1, min(3, len(hosts)))), hosts)
    report = {
        "title": script.title,
        "segments": len(script.segments),
        "speakers": hosts,
        "chars": script.char_count,
        "issues": [{"category": i.category, "severity": i.severity, "message": i.message} for i in issues],
    }
    print(json.dumps(report, indent=2))
    if any(i.severity == "error" for i in issues):
        sys.exit(1)


if __name__ == "__main__":
    main()
