from __future__ import annotations

import os
from pathlib import Path

from duocast_contracts.podcast_job import Duration, ScriptOptions, ShowFormat, Tone

FORMAT_LABELS = {
    ShowFormat.CONVERSATION: "Casual Conversation",
    ShowFormat.INTERVIEW: "Structured Interview",
    ShowFormat.DEEP_DIVE: "Investigative Deep Dive",
    ShowFormat.EXPLAINER: "Educational Explainer",
    ShowFormat.DEBATE: "Point-Counterpoint",
    ShowFormat.NEWS: "News Briefing",
    ShowFormat.STORYTELLING: "Narrative Storytelling",
    ShowFormat.CHALLENGER: "Devil's Advocate",
}

FORMAT_DIRECTIVES = {
    ShowFormat.CONVERSATION: "Free-flowing conversation. Hosts build on each other's ideas and follow curiosity.",
    ShowFormat.INTERVIEW: (
        "Structured interview. The first host asks prepared questions in chapters: background, key findings, "
        "a deep dive, implications. The second host answers as the subject matter expert."
    ),
    ShowFormat.DEEP_DIVE: (
        "Investigative deep dive. Open with the central question, layer in evidence chapter by chapter, "
        "and build toward a synthesis."
    ),
    ShowFormat.EXPLAINER: (
        "Educational explainer. Start from the simplest version of the idea and add complexity. "
        "One host asks clarifying questions that push the explanation deeper."
    ),
    ShowFormat.DEBATE: (
        "Point-counterpoint. Hosts hold opposing, evidence-based positions, rebut each other, "
        "then name common ground and the takeaway."
    ),
    ShowFormat.NEWS: "News briefing on one story: headline, context, facts, analysis, what to watch next.",
    ShowFormat.STORYTELLING: "Narrative arc: hook, setup, rising tension, turning point, resolution.",
    ShowFormat.CHALLENGER: (
        "Devil's advocate. The first host presents the conventional view; the second stress-tests every claim. "
        "Concede valid challenges and strengthen the rest."
    ),
}

TONE_DESCRIPTIONS = {
    Tone.CASUAL: "Casual and conversational. Everyday language, light and engaging.",
    Tone.TECHNICAL: "Technical and precise. Domain terminology, assumes background knowledge, focuses on nuance.",
    Tone.EDUCATIONAL: "Educational and accessible. Clear explanations, analogies and examples for a general audience.",
}

SEGMENT_GUIDANCE = {
    Duration.SHORT: "15-25 segments (~5 minutes of audio)",
    Duration.STANDARD: "30-50 segments (~10 minutes of audio)",
    Duration.LONG: "60-100 segments (~20 minutes of audio)",
    Duration.DEEP: "140-180 segments (~35 minutes of audio)",
}

HOST_ROLES = [
    "Host and driver. Introduces topics, provides context, uses analogies, keeps momentum.",
    "Analyst. Asks probing questions, challenges assumptions, brings counterpoints and edge cases.",
    "Contrarian. Brings real-world anecdotes and pushes back when the others agree too easily.",
]

TEMPLATES_DIR = Path(__file__).parent / "templates"

FILLER_WARNING = 'Never use filler reactions such as "That\'s a great point", "Absolutely" or "Exactly".'

_DEFAULT_SYSTEM = """You are a podcast script writer. You turn written source material into an engaging {host_desc} show.

HOSTS:
{hosts}

RULES:
1. Stay faithful to the source material. Do not invent facts.
2. Every host participates throughout; each gets at least {min_share} of segments.
3. Natural spoken language: contractions, short turns of 1-3 sentences.
4. Clear introduction, exploration of key themes, and conclusion.
5. {filler}

OUTPUT FORMAT:
Return ONLY valid JSON with this structure:
{{"title": "...", "summary": "one sentence", "segments": [{{"speaker": "{first}", "text": "..."}}]}}
The "speaker" field must be exactly one of: {names}."""


def _load_prompt(rel_path: str) -> str:
    """PROMPTS_DIR, then ./prompts, then the templates shipped with the package."""
    candidates = [Path.cwd() / "prompts" / rel_path, TEMPLATES_DIR / rel_path]
    env_dir = os.getenv("PROMPTS_DIR")
    if env_dir:
        candidates.insert(0, Path(env_dir) / rel_path)
    for candidate in candidates:
        if candidate.exists():
            return candidate.read_text(encoding="utf-8")
    return ""


def host_description(count: int) -> str:
    return {1: "single-host", 3: "three-host"}.get(count, "two-host")


def min_share(count: int) -> float:
    return 0.20 if count >= 3 else 0.30


def build_system_prompt(hosts: list[str]) -> str:
    template = _load_prompt("script_system.md") or _DEFAULT_SYSTEM
    host_lines = "\n".join(f"- {name}: {HOST_ROLES[i % len(HOST_ROLES)]}" for i, name in enumerate(hosts))
    return template.format(
        host_desc=host_description(len(hosts)),
        hosts=host_lines,
        min_share=f"{int(min_share(len(hosts)) * 100)}%",
        filler=FILLER_WARNING,
        first=hosts[0],
        names=", ".join(hosts),
    )


def build_user_prompt(content: str, options: ScriptOptions, hosts: list[str]) -> str:
    guidance = SEGMENT_GUIDANCE[options.duration]
    lines = [
        "<scratchpad>",
        "Plan first: find the 3-5 key themes, sketch the arc, and decide how to reach " + guidance + ".",
        "</scratchpad>",
        "",
        f"Convert the following content into a {host_description(len(hosts))} {FORMAT_LABELS[options.format].lower()}.",
        "",
        "STRUCTURE: " + FORMAT_DIRECTIVES[options.format],
        "",
    ]
    if options.topic:
        lines += [f"FOCUS: Center the conversation on: {options.topic}", ""]
    if options.styles:
        lines += ["STYLE: " + ", ".join(options.styles), ""]
    lines += [
        "TONE: " + TONE_DESCRIPTIONS[options.tone],
        "",
        "TARGET LENGTH: " + guidance,
        "",
        "SOURCE MATERIAL:",
        content,
    ]
    return "\n".join(lines)


def build_revision_prompt(script_json: str, content: str, options: ScriptOptions, hosts: list[str], issues: list[str]) -> str:
    issue_lines = "\n".join(f"- {i}" for i in issues)
    return f"""You are revising a podcast script that has quality issues.

ISSUES FOUND:
{issue_lines}

REQUIREMENTS:
- Format: {FORMAT_LABELS[options.format]}
- Target segments: {SEGMENT_GUIDANCE[options.duration]}
- Tone: {TONE_DESCRIPTIONS[options.tone]}
- Each speaker ({", ".join(hosts)}) has at least {int(min_share(len(hosts)) * 100)}% of segments
- {FILLER_WARNING}

Fix every issue, keep the topic, flow and speaker names, and return the full revised script as JSON in the same shape.

CURRENT SCRIPT:
{script_json}

SOURCE MATERIAL (for reference):
{content}"""
