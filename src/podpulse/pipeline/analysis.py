"""
Episode and Weekly Analysis Prompts

Prompt construction and permissive parsing of LLM output for per-episode
analysis and the weekly cross-show trend report.
"""

import json
import logging
import re
from typing import List, Tuple

from ..models import EpisodeAnalysis, Theme

logger = logging.getLogger(__name__)


ANALYSIS_SYSTEM_PROMPT = """You are an expert media analyst specializing in podcast content analysis.
Analyze the following podcast transcript and return a JSON object with exactly these fields:
- "summary": A 2-3 paragraph summary of the episode's main points and arguments
- "tags": An array of 5-15 topic tags as strings (e.g., ["dating", "masculinity", "self-improvement"])
- "themes": An array of objects with "theme" and "description" fields identifying major themes discussed
- "sentiment": A brief overall tone assessment (e.g., "confrontational", "educational", "motivational", "conversational")
- "keyQuotes": An array of 3-5 notable direct quotes from the transcript

Return ONLY valid JSON. No markdown formatting, no code fences, no explanation outside the JSON."""

WEEKLY_ANALYSIS_SYSTEM_PROMPT = """You are an expert media analyst who studies podcast ecosystems.
Given summaries and analyses of podcast episodes from the past week, produce a comprehensive trend analysis.

Your analysis should be in markdown format and include:

1. **Trending Topics**: What topics appeared across multiple shows this week?
2. **Cross-Show Themes**: How did different podcasts present similar themes? Where did they agree or disagree?
3. **Emerging Narratives**: What new narratives or talking points are gaining traction?
4. **Rhetoric Patterns**: How are these topics being framed? What persuasion techniques are being used?
5. **Notable Shifts**: Any changes in tone, focus, or positioning compared to typical content?

Also return a JSON array of trending topic strings at the very end, wrapped in a <topics> tag like:
<topics>["topic1", "topic2", ...]</topics>

Be specific and cite which podcasts discussed which topics."""

TRUNCATION_MARKER = "\n\n[TRANSCRIPT TRUNCATED]"

_CODE_FENCE_START_RE = re.compile(r"^```(?:json)?\n?")
_CODE_FENCE_END_RE = re.compile(r"\n?```$")
_TOPICS_RE = re.compile(r"<topics>(.*?)</topics>", re.DOTALL)


def build_analysis_prompt(transcript: str, max_chars: int = 50000) -> str:
    """Build the user prompt, truncating transcripts longer than max_chars."""
    if len(transcript) > max_chars:
        logger.info(f"Truncating transcript from {len(transcript)} to {max_chars} chars")
        transcript = transcript[:max_chars] + TRUNCATION_MARKER

    return f"Analyze this podcast episode transcript:\n\n{transcript}"


def _strip_code_fences(text: str) -> str:
    if text.startswith("```"):
        text = _CODE_FENCE_START_RE.sub("", text)
        text = _CODE_FENCE_END_RE.sub("", text)
    return text


def _as_list(value) -> list:
    return value if isinstance(value, list) else []


def _parse_themes(value) -> List[Theme]:
    themes = []
    for item in _as_list(value):
        if isinstance(item, dict) and item.get("theme"):
            themes.append(Theme(theme=str(item["theme"]), description=str(item.get("description", ""))))
        elif isinstance(item, str):
            themes.append(Theme(theme=item))
    return themes


def parse_analysis_result(
    response: str,
    episode_id: str,
    fallback_chars: int = 2000,
) -> EpisodeAnalysis:
    """
    Parse the analysis JSON permissively.

    Strips markdown code fences if present. When the response is not a JSON
    object, falls back to a degraded analysis: the first ``fallback_chars``
    characters as summary, empty lists and sentiment "unknown".
    """
    json_str = _strip_code_fences(response.strip())

    try:
        parsed = json.loads(json_str)
        if not isinstance(parsed, dict):
            raise ValueError("analysis response is not a JSON object")
    except (json.JSONDecodeError, ValueError) as e:
        logger.warning(f"Failed to parse analysis JSON, using fallback: {e}")
        return EpisodeAnalysis(
            episode_id=episode_id,
            summary=response[:fallback_chars],
            tags=[],
            themes=[],
            sentiment="unknown",
            key_quotes=[],
        )

    return EpisodeAnalysis(
        episode_id=episode_id,
        summary=str(parsed.get("summary") or ""),
        tags=[str(t) for t in _as_list(parsed.get("tags"))],
        themes=_parse_themes(parsed.get("themes")),
        sentiment=str(parsed.get("sentiment") or ""),
        key_quotes=[str(q) for q in _as_list(parsed.get("keyQuotes", parsed.get("key_quotes")))],
    )


def build_weekly_prompt(entries: List[dict]) -> str:
    """
    Build the weekly report prompt.

    Args:
        entries: Dicts with podcast_title, episode_title, summary, tags, themes
    """
    blocks = []
    for entry in entries:
        themes = "; ".join(f"{t.theme}: {t.description}" for t in entry["themes"])
        blocks.append(
            f'## {entry["podcast_title"]}: "{entry["episode_title"]}"\n\n'
            f'Summary: {entry["summary"]}\n\n'
            f'Tags: {", ".join(entry["tags"])}\n\n'
            f"Themes: {themes}"
        )

    joined = "\n\n---\n\n".join(blocks)
    return f"Here are the podcast episode analyses from this past week:\n\n{joined}"


def parse_weekly_analysis(response: str) -> Tuple[str, List[str]]:
    """
    Split a weekly report into (markdown body, trending topics).

    Topics come from a ``<topics>[...]</topics>`` block; a missing or invalid
    block yields an empty list.
    """
    match = _TOPICS_RE.search(response)
    if not match:
        return response.strip(), []

    topics: List[str] = []
    try:
        parsed = json.loads(match.group(1))
        if isinstance(parsed, list):
            topics = [str(t) for t in parsed]
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse trending topics: {e}")

    analysis = _TOPICS_RE.sub("", response).strip()
    return analysis, topics
