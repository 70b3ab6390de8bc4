"""
Prompt templates for the analysis model.

All prompts ask for a single JSON object so responses can be parsed with
``response_format={"type": "json_object"}``.
"""
from __future__ import annotations

from typing import List, Optional

TOPICS_SYSTEM = (
    "You turn video transcripts into short highlight reels. "
    "Every highlight must be anchored on a verbatim quote from the transcript. "
    "Reply with JSON only."
)

TOPICS_TEMPLATE = """Video: {title} by {author}

Transcript (each line is "[mm:ss] text"):
{transcript}

Pick the {count} most insightful, self-contained moments{theme_clause}.
For each return:
  - "title": a punchy headline, max 10 words
  - "description": one sentence on why it matters
  - "quote": {{"timestamp": "[mm:ss-mm:ss]", "text": "<verbatim transcript excerpt, 1-4 sentences>"}}
  - "keywords": up to 5 lowercase keywords
{exclude_clause}
Return {{"topics": [...]{extra_keys}}}."""

THEMES_CLAUSE = """
Also return "themes": up to {theme_count} short labels (1-3 words) naming recurring subjects a viewer might want to explore."""

CANDIDATES_CLAUSE = """
Also return "candidates": up to {pool_size} further notable moments, each {{"title": ..., "quote": {{"timestamp": ..., "text": ...}}}}."""

SUMMARY_SYSTEM = "You write concise, well-structured video summaries in Markdown. Reply with JSON only."

SUMMARY_TEMPLATE = """Video: {title} by {author}

Transcript:
{transcript}

Write a summary with a one-paragraph overview followed by 3-6 bullet-point key takeaways.
Reference moments as [mm:ss] where helpful.
Return {{"summary": "<markdown>"}}."""

QUESTIONS_SYSTEM = "You suggest follow-up questions a curious viewer would ask about a video. Reply with JSON only."

QUESTIONS_TEMPLATE = """Video: {title}

Highlights:
{topics}

Transcript:
{transcript}

Suggest {count} short, specific questions answerable from the transcript.
Return {{"questions": ["...", ...]}}."""

CHAT_SYSTEM = """You answer questions about a single video using only its transcript.
Video: "{title}" by {author}
Highlights already shown to the viewer:
{topics}

Transcript (each line is "[mm:ss] text"):
{transcript}

Cite supporting moments inline as [1], [2], ... and return JSON:
{{"answer": "<markdown with [n] markers>", "citations": [{{"number": 1, "timestamp": "[mm:ss-mm:ss]", "text": "<verbatim transcript excerpt>"}}]}}"""

DEFAULT_QUESTIONS = [
    "What are the main takeaways from this video?",
    "Can you explain the most important idea in more detail?",
    "What examples or evidence does the speaker give?",
    "How could I apply these ideas in practice?",
    "What questions does the video leave open?",
]


def topics_prompt(
    *,
    title: str,
    author: str,
    transcript: str,
    count: int,
    theme: Optional[str],
    exclude_keys: List[str],
    include_themes: bool,
    include_candidates: bool,
    theme_count: int,
    pool_size: int,
) -> str:
    theme_clause = f' about the theme "{theme}"' if theme else ""
    exclude_clause = ""
    if exclude_keys:
        listed = "\n".join(f"  * {key}" for key in exclude_keys)
        exclude_clause = f"\nDo NOT repeat these already-shown moments (timestamp|quote):\n{listed}\n"
    extra_keys = ""
    if include_themes:
        exclude_clause += THEMES_CLAUSE.format(theme_count=theme_count)
        extra_keys += ', "themes": [...]'
    if include_candidates:
        exclude_clause += CANDIDATES_CLAUSE.format(pool_size=pool_size)
        extra_keys += ', "candidates": [...]'
    return TOPICS_TEMPLATE.format(
        title=title,
        author=author,
        transcript=transcript,
        count=count,
        theme_clause=theme_clause,
        exclude_clause=exclude_clause,
        extra_keys=extra_keys,
    )
