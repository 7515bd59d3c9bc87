import re
from pathlib import Path
from typing import Any, AbstractSet, Dict, NamedTuple, Optional, Sequence

import prompt_builder
from errors import ProviderFailure
from llm_client import ModelGateway, RequestOptions
from log_utils import get_logger, preview
from models import JobAnalysis, JobPosting, OptimizationResult, SuggestedEdit
from patcher import patch
from response_normalizer import normalize, normalize_analysis, parse_job_posting, strip_code_fence
from review import ReviewSession

LOGGER = get_logger("pipeline")

# featureId values the gateway routes on
FEATURE_JOB_DESCRIPTION = "jobDescription"
FEATURE_GENERATE_CV = "generateCV"
FEATURE_JOB_HUNT = "jobHunt"

STRUCTURED_OPTIONS = RequestOptions(json_mode=True)
TEXT_OPTIONS = RequestOptions()
TEST_OPTIONS = RequestOptions(max_tokens=64)

# Whole lines such as "[Date]" or "[Your Address]" left in by the model.
PLACEHOLDER_LINE_RE = re.compile(r"^\s*\[[^\]\n]{1,60}\]\s*$")


class CoverLetter(NamedTuple):
    text: str
    prompt_source: str


# ===================== OPTIMIZE / RESCORE =====================

async def suggestions(
    gateway: ModelGateway,
    cv_text: str,
    job_description: str,
    structured_data: Optional[Any] = None,
    prompts_dir: Optional[Path] = None,
) -> OptimizationResult:
    """Stateless optimize call over plain CV text."""
    rendered = prompt_builder.build(
        prompt_builder.cv_lines_from_text(cv_text), job_description, structured_data, prompts_dir
    )
    raw = await gateway.request(FEATURE_GENERATE_CV, rendered.text, STRUCTURED_OPTIONS)
    return normalize(raw, rendered.source)


async def optimize_cv(
    gateway: ModelGateway,
    session: ReviewSession,
    prompts_dir: Optional[Path] = None,
) -> OptimizationResult:
    """
    First optimization round for a session.

    The returned result is what the provider produced; whether it became
    the session's current result depends on request ordering (a newer
    recalculation may already have landed).
    """
    rendered = prompt_builder.build(session.original_lines, session.job_description, session.structured_data, prompts_dir)
    with session.action("optimize") as ticket:
        raw = await gateway.request(FEATURE_GENERATE_CV, rendered.text, STRUCTURED_OPTIONS)
        result = normalize(raw, rendered.source)
        session.apply_result(ticket, result, restart=True)
    return result


async def recalculate(
    gateway: ModelGateway,
    current_result: Optional[OptimizationResult],
    lines: Sequence[str],
    edits: Sequence[SuggestedEdit],
    accepted: AbstractSet[int],
    job_description: str,
    prompts_dir: Optional[Path] = None,
) -> OptimizationResult:
    """
    One rescoring round trip over the patched text.

    No structured data is sent. The new result remembers the score of the
    one it replaces in previousMatchScore.
    """
    patched = patch(lines, edits, accepted)
    result = await suggestions(gateway, patched, job_description, None, prompts_dir)
    if current_result is not None:
        result.previous_match_score = current_result.match_score
    LOGGER.info(
        "recalculated",
        previous=result.previous_match_score,
        score=result.match_score,
        accepted=len(accepted),
        is_fallback=result.is_fallback,
    )
    return result


async def recalculate_session(
    gateway: ModelGateway,
    session: ReviewSession,
    prompts_dir: Optional[Path] = None,
) -> OptimizationResult:
    """
    Rescore the session's patched text.

    What gets committed is captured before the provider call, so an
    optimize landing in the meantime cannot change it.
    """
    patched_lines, committed = session.commit_snapshot()
    with session.action("recalculate") as ticket:
        result = await recalculate(
            gateway,
            session.result,
            session.lines,
            session.edits,
            session.state.accepted,
            session.job_description,
            prompts_dir,
        )
        session.apply_result(ticket, result, patched_lines=patched_lines, committed=committed)
    return result


def load_manual_response(session: ReviewSession, raw: str) -> OptimizationResult:
    """Normalize a reply the user obtained by running the prompt themselves."""
    with session.action("manual") as ticket:
        result = normalize(raw, "manual")
        session.apply_result(ticket, result, restart=True)
    return result


# ===================== OTHER FEATURES =====================

async def analyze_job_description(gateway: ModelGateway, job_description: str) -> JobAnalysis:
    prompt = prompt_builder.build_analysis_prompt(job_description)
    raw = await gateway.request(FEATURE_JOB_DESCRIPTION, prompt, STRUCTURED_OPTIONS)
    return normalize_analysis(raw)


def clean_cover_letter(text: str) -> str:
    body = strip_code_fence(text)
    kept = [line.rstrip() for line in body.splitlines() if not PLACEHOLDER_LINE_RE.match(line)]
    # Collapse the blank runs left behind by removed lines.
    cleaned = re.sub(r"\n{3,}", "\n\n", "\n".join(kept))
    return cleaned.strip()


async def generate_cover_letter(
    gateway: ModelGateway,
    cv_lines: Sequence[str],
    job_description: str,
    options: Optional[prompt_builder.CoverLetterOptions] = None,
    structured_data: Optional[Any] = None,
    prompts_dir: Optional[Path] = None,
) -> CoverLetter:
    rendered = prompt_builder.build_cover_letter(cv_lines, job_description, options, structured_data, prompts_dir)
    raw = await gateway.request(FEATURE_GENERATE_CV, rendered.text, TEXT_OPTIONS)
    return CoverLetter(clean_cover_letter(raw), rendered.source)


async def extract_job_from_url(gateway: ModelGateway, url: str) -> JobPosting:
    prompt = prompt_builder.build_job_extraction_prompt(url)
    raw = await gateway.request(FEATURE_JOB_HUNT, prompt, STRUCTURED_OPTIONS)
    return parse_job_posting(raw, url)


async def check_provider(gateway: ModelGateway, provider_id: str) -> Dict[str, Any]:
    """Send the fixed test prompt to one provider and report the outcome."""
    try:
        text = await gateway.request_with(provider_id, prompt_builder.TEST_PROMPT, TEST_OPTIONS)
    except ProviderFailure as exc:
        return {
            "success": False,
            "provider": provider_id,
            "cause": exc.cause.value,
            "message": exc.user_message,
        }
    return {"success": True, "provider": provider_id, "response": preview(text, 200)}
