"""Scoring synthesizer — bounded prompt in, score and highlights out.

This stage never fails the pipeline. Transport errors and unparseable
answers degrade to a default ``ScoreResult``.
"""

from __future__ import annotations

from pathlib import Path

import structlog

from shelfscore.models.contracts import MAX_HIGHLIGHTS, NO_SUMMARY, ScoreResult
from shelfscore.models.outcomes import ExtractedContent, ResolvedIdentity
from shelfscore.pipeline.parsing import clamp_score, parse_highlights, parse_score
from shelfscore.utils.completions import CompletionClient, CompletionError

log = structlog.get_logger("pipeline.scoring")

PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"
DEFAULT_CONTENT_CHARS = 4000

_scoring_prompt_cache: str | None = None


def _load_scoring_prompt() -> str:
    """Load the product scoring prompt template (cached after first read)."""
    global _scoring_prompt_cache  # noqa: PLW0603
    if _scoring_prompt_cache is None:
        _scoring_prompt_cache = (PROMPTS_DIR / "product_scoring.txt").read_text()
    return _scoring_prompt_cache


def build_scoring_prompt(
    identity: ResolvedIdentity,
    content: ExtractedContent | None,
    content_chars: int = DEFAULT_CONTENT_CHARS,
) -> str:
    return _load_scoring_prompt().format(
        name=identity.name or "Unknown Product",
        brand=identity.brand or "Unknown Brand",
        content=content.bounded(content_chars) if content else "",
    )


def parse_score_response(text: str | None) -> ScoreResult:
    highlights = parse_highlights(text, limit=MAX_HIGHLIGHTS)
    return ScoreResult(
        score=clamp_score(parse_score(text)),
        summary="\n".join(highlights) if highlights else NO_SUMMARY,
        highlights=highlights,
    )


async def score(
    identity: ResolvedIdentity,
    content: ExtractedContent | None,
    *,
    completions: CompletionClient,
    model: str,
    timeout: float,
    content_chars: int = DEFAULT_CONTENT_CHARS,
) -> ScoreResult:
    prompt = build_scoring_prompt(identity, content, content_chars)
    try:
        text = await completions.complete(
            model,
            [{"role": "user", "content": prompt}],
            timeout=timeout,
        )
    except CompletionError as exc:
        log.warning("scoring_call_failed", model=model, status=exc.status, error=str(exc))
        return ScoreResult()
    except Exception:
        log.exception("scoring_call_crashed", model=model)
        return ScoreResult()

    result = parse_score_response(text)
    if parse_score(text) is None:
        log.warning("scoring_no_score_token", model=model, response=(text or "")[:200])
    log.info("scoring_complete", score=result.score, highlights=len(result.highlights))
    return result
