from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from duocast_contracts.errors import DuocastError
from duocast_contracts.podcast_job import Script, ScriptOptions
from duocast_podcast.application.ports import ScriptGenerator
from duocast_podcast.infrastructure.logging import get_logger
from duocast_podcast.infrastructure.script.prompts import min_share

log = get_logger(__name__)

BANNED_PHRASES = (
    "that's a great point",
    "absolutely",
    "exactly",
    "that's fascinating",
    "i love that",
    "so true",
    "100 percent",
    "you nailed it",
    "that's so interesting",
    "right, right",
    "great question",
    "that's a really good question",
    "i couldn't agree more",
    "you're so right",
    "that's brilliant",
    "oh wow",
    "amazing point",
    "that's spot on",
    "couldn't have said it better",
    "you hit the nail on the head",
    "that's exactly right",
)
SEGMENT_TOLERANCE = 0.15
MAX_FILLER_SEGMENTS = 5


@dataclass(frozen=True)
class ReviewIssue:
    category: str
    message: str
    severity: str = "error"

    def __str__(self) -> str:
        return f"[{self.severity}] {self.category}: {self.message}"


@dataclass
class ReviewOutcome:
    script: Script
    issues: List[ReviewIssue] = field(default_factory=list)
    revised: bool = False

    @property
    def has_errors(self) -> bool:
        return any(i.severity == "error" for i in self.issues)


def check_segment_count(script: Script, target: int) -> List[ReviewIssue]:
    actual = len(script.segments)
    tolerance = target * SEGMENT_TOLERANCE
    if abs(actual - target) > tolerance:
        return [
            ReviewIssue(
                "segment_count",
                f"script has {actual} segments, target is {target} "
                f"(allowed {int(target - tolerance)}-{int(target + tolerance)})",
            )
        ]
    return []


def check_speaker_balance(script: Script, hosts: List[str]) -> List[ReviewIssue]:
    total = len(script.segments)
    if total == 0 or len(hosts) < 2:
        return []
    floor = min_share(len(hosts))
    counts = {h: 0 for h in hosts}
    for seg in script.segments:
        counts[seg.speaker] = counts.get(seg.speaker, 0) + 1
    issues = []
    for speaker, count in counts.items():
        share = count / total
        if share < floor:
            issues.append(
                ReviewIssue(
                    "balance",
                    f"{speaker} has only {share:.0%} of segments ({count}/{total}), minimum is {floor:.0%}",
                )
            )
    return issues


def check_filler_phrases(script: Script) -> List[ReviewIssue]:
    hits = sum(1 for seg in script.segments if any(p in seg.text.lower() for p in BANNED_PHRASES))
    if not hits:
        return []
    severity = "error" if hits > MAX_FILLER_SEGMENTS else "warning"
    return [ReviewIssue("filler", f"{hits} segments use banned filler phrases", severity)]


def review_script(script: Script, options: ScriptOptions, hosts: List[str]) -> List[ReviewIssue]:
    return (
        check_segment_count(script, options.duration.target_segments)
        + check_speaker_balance(script, hosts)
        + check_filler_phrases(script)
    )


class ScriptReviewer:
    """Heuristic review with at most one revision call."""

    def __init__(self, generator: ScriptGenerator) -> None:
        self.generator = generator

    async def refine(self, script: Script, content: str, options: ScriptOptions, hosts: List[str]) -> ReviewOutcome:
        issues = review_script(script, options, hosts)
        outcome = ReviewOutcome(script=script, issues=issues)
        if not outcome.has_errors:
            return outcome
        log.info("review.revise issues=%s", "; ".join(str(i) for i in issues))
        try:
            revised = await self.generator.revise(script, content, options, hosts, [str(i) for i in issues])
        except DuocastError as exc:
            log.warning("review.revision_failed keeping original error=%s", exc)
            return outcome
        return ReviewOutcome(script=revised, issues=issues, revised=True)
