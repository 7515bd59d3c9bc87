import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Tuple

from errors import ResponseParseFailure
from log_utils import get_logger, preview
from models import (
    UNKNOWN_MODEL,
    JobAnalysis,
    JobPosting,
    OptimizationResult,
    PromptSource,
    Score,
    SuggestedEdit,
)

LOGGER = get_logger("response_normalizer")

MIN_IMPROVED_CHARS = 10

ORIGINAL_KEYS = ("originalBullet", "original", "originalText", "currentText")
IMPROVED_KEYS = ("improvedBullet", "suggested", "improvedText", "suggestedText")

# Phrases that mark a suggestion as a template rather than a concrete rewrite.
GENERIC_PLACEHOLDER_RE = re.compile(
    r"\badd specific\b"
    r"|(?<!\w)etc\."
    r"|\bgeneric\b"
    r"|\blist (?:your|relevant|skills)\b"
    r"|\binsert\s"
    r"|(?-i:\[[A-Z][a-z]+(?: [A-Za-z]+)*\])",
    re.IGNORECASE,
)

# A leading ``` or ```json fence and its closing ``` around the whole reply.
FENCE_RE = re.compile(r"^\s*```[A-Za-z]*[ \t]*\n?(.*?)\n?[ \t]*```\s*$", re.DOTALL)


@dataclass(frozen=True)
class ParseContext:
    """Which call site a reply belongs to and the keys that mark a real answer."""

    name: str
    expected_keys: Tuple[str, ...]


ANALYSIS = ParseContext("analysis", ("keywords", "skills", "requirements"))
OPTIMIZATION = ParseContext("optimization", ("analysis", "recommendations", "suggestedEdits", "matchScore"))
JOB = ParseContext("job", ("title", "company", "requirements"))


# ===================== JSON EXTRACTION =====================

def strip_code_fence(text: str) -> str:
    match = FENCE_RE.match(text or "")
    if match:
        return match.group(1).strip()
    return (text or "").strip()


def iter_json_objects(text: str) -> Iterator[Dict[str, Any]]:
    """
    Yield every top-level JSON object embedded in `text`, in order.

    Each '{' is handed to the JSON decoder, which either returns one
    complete value or fails. On success scanning resumes after the value,
    so objects nested inside a parsed object are never yielded on their
    own. On failure, including nesting too deep for the decoder, scanning
    resumes at the next '{'.
    """
    decoder = json.JSONDecoder()
    pos = text.find("{")
    while pos != -1:
        try:
            value, end = decoder.raw_decode(text, pos)
        except (json.JSONDecodeError, RecursionError):
            pos = text.find("{", pos + 1)
            continue
        if isinstance(value, dict):
            yield value
        pos = text.find("{", end)


def prefer_expected_shape(candidates: Iterator[Dict[str, Any]], context: ParseContext) -> Optional[Dict[str, Any]]:
    """First candidate carrying at least one of the context's expected keys."""
    for candidate in candidates:
        if any(key in candidate for key in context.expected_keys):
            return candidate
    return None


def extract_object(raw: str, context: ParseContext) -> Dict[str, Any]:
    text = strip_code_fence(raw)
    if not text:
        raise ResponseParseFailure(f"{context.name}: empty response")
    found = prefer_expected_shape(iter_json_objects(text), context)
    if found is None:
        raise ResponseParseFailure(
            f"{context.name}: no JSON object with any of {', '.join(context.expected_keys)}"
        )
    return found


# ===================== FIELD COERCION =====================

def _first_text(entry: Dict[str, Any], keys: Tuple[str, ...]) -> str:
    for key in keys:
        value = entry.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return ""


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def string_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def coerce_keywords(value: Any) -> List[str]:
    """
    Keywords as a flat list.

    Some models answer with an object of lists (jobKeywords, missingKeywords,
    ...); those are flattened into their de-duplicated union, in order.
    """
    if isinstance(value, dict):
        merged: List[str] = []
        for sub in value.values():
            for word in string_list(sub):
                if word not in merged:
                    merged.append(word)
        return merged
    return string_list(value)


def coerce_score(value: Any) -> Optional[Score]:
    """Clamp to 0..100; whole numbers come back as int."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        match = re.search(r"-?\d+(?:\.\d+)?", value)
        if not match:
            return None
        number = float(match.group(0))
    else:
        return None
    number = max(0.0, min(100.0, number))
    return int(number) if number.is_integer() else number


def _match_score(data: Dict[str, Any]) -> Optional[Score]:
    score = coerce_score(data.get("matchScore"))
    if score is not None:
        return score
    analysis = data.get("analysis")
    if isinstance(analysis, dict):
        return coerce_score(analysis.get("overallMatch"))
    return None


def edit_rejection_reason(original: str, improved: str) -> Optional[str]:
    """
    Why a suggested edit is too weak to show, or None when it is fine.

    Reasons: missing_text, identical, too_short, generic_placeholder.
    """
    if not original.strip() or not improved.strip():
        return "missing_text"
    if original.strip().casefold() == improved.strip().casefold():
        return "identical"
    if len(improved.strip()) < MIN_IMPROVED_CHARS:
        return "too_short"
    if GENERIC_PLACEHOLDER_RE.search(improved):
        return "generic_placeholder"
    return None


def coerce_edits(value: Any) -> List[SuggestedEdit]:
    if not isinstance(value, list):
        return []
    edits: List[SuggestedEdit] = []
    for position, entry in enumerate(value):
        if not isinstance(entry, dict):
            LOGGER.info("edit_rejected", position=position, reason="missing_text")
            continue
        original = _first_text(entry, ORIGINAL_KEYS)
        improved = _first_text(entry, IMPROVED_KEYS)
        reason = edit_rejection_reason(original, improved)
        if reason:
            LOGGER.info("edit_rejected", position=position, reason=reason, original=preview(original, 80))
            continue
        edits.append(
            SuggestedEdit(
                section=_optional_text(entry.get("section")),
                original_text=original,
                improved_text=improved,
                reason=_optional_text(entry.get("reason")) or "",
            )
        )
    return edits


def _extras(data: Dict[str, Any], known: Tuple[str, ...], model_cls: Any) -> Dict[str, Any]:
    # Keys the model sent that have no field of their own are passed through.
    return {
        key: value
        for key, value in data.items()
        if key not in known and key not in model_cls.model_fields
    }


# ===================== OPTIMIZATION =====================

OPTIMIZATION_KEYS = (
    "model",
    "matchScore",
    "keywords",
    "suggestedEdits",
    "overallRecommendations",
    "jobDetails",
    "predictedMatchScoreIfKeywordsAdded",
    "previousMatchScore",
    "isFallback",
    "promptSource",
)


def parse_optimization(raw: str, prompt_source: PromptSource = "template") -> OptimizationResult:
    """
    Strict parse of an optimization reply.

    Raises ResponseParseFailure when no usable object is found; callers
    that must always get a result go through `normalize` instead.
    """
    data = extract_object(raw, OPTIMIZATION)
    model_name = _optional_text(data.get("model")) or UNKNOWN_MODEL
    job_details = data.get("jobDetails")

    return OptimizationResult(
        **_extras(data, OPTIMIZATION_KEYS, OptimizationResult),
        model=model_name,
        match_score=_match_score(data),
        keywords=coerce_keywords(data.get("keywords")),
        suggested_edits=coerce_edits(data.get("suggestedEdits")),
        overall_recommendations=string_list(data.get("overallRecommendations")),
        job_details=job_details if isinstance(job_details, dict) else None,
        predicted_match_score_if_keywords_added=coerce_score(data.get("predictedMatchScoreIfKeywordsAdded")),
        is_fallback=False,
        prompt_source=prompt_source,
    )


def fallback_optimization(prompt_source: PromptSource = "template") -> OptimizationResult:
    return OptimizationResult(
        model=UNKNOWN_MODEL,
        match_score=75,
        keywords=["technology", "development"],
        suggested_edits=[
            SuggestedEdit(
                section="Summary",
                original_text="Experienced developer",
                improved_text="Experienced software developer with expertise in modern technologies",
                reason="More specific and includes relevant keywords",
            )
        ],
        overall_recommendations=[
            "Add more specific technical skills that match the job requirements",
            "Include quantifiable achievements where possible",
            "Use action verbs to describe your experience",
        ],
        is_fallback=True,
        prompt_source=prompt_source,
    )


def normalize(raw: str, prompt_source: PromptSource = "template") -> OptimizationResult:
    """Never raises: an unusable reply becomes the labeled fallback result."""
    try:
        return parse_optimization(raw, prompt_source)
    except ResponseParseFailure as exc:
        LOGGER.warning("response_parse_fallback", context=OPTIMIZATION.name, error=exc.detail, raw=preview(raw))
        return fallback_optimization(prompt_source)


# ===================== JOB DESCRIPTION ANALYSIS =====================

ANALYSIS_KEYS = ("keywords", "skills", "requirements", "industry", "level", "summary", "isFallback")


def parse_analysis(raw: str) -> JobAnalysis:
    data = extract_object(raw, ANALYSIS)
    return JobAnalysis(
        **_extras(data, ANALYSIS_KEYS, JobAnalysis),
        keywords=coerce_keywords(data.get("keywords")),
        skills=string_list(data.get("skills")),
        requirements=string_list(data.get("requirements")),
        industry=_optional_text(data.get("industry")),
        level=_optional_text(data.get("level")),
        summary=_optional_text(data.get("summary")),
        is_fallback=False,
    )


def fallback_analysis() -> JobAnalysis:
    return JobAnalysis(
        keywords=["technology", "development", "experience"],
        skills=["Technical Skills", "Communication", "Problem Solving"],
        requirements=["Bachelor's degree", "Experience in field"],
        industry="Technology",
        level="Mid",
        summary="Technical role requiring relevant experience",
        is_fallback=True,
    )


def normalize_analysis(raw: str) -> JobAnalysis:
    try:
        return parse_analysis(raw)
    except ResponseParseFailure as exc:
        LOGGER.warning("response_parse_fallback", context=ANALYSIS.name, error=exc.detail, raw=preview(raw))
        return fallback_analysis()


# ===================== JOB POSTING =====================

JOB_KEYS = (
    "title",
    "company",
    "location",
    "salary",
    "type",
    "description",
    "requirements",
    "benefits",
    "sponsorship",
    "postedDate",
    "jobUrl",
)


def _sponsorship(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "yes"):
            return True
        if lowered in ("false", "no"):
            return False
    return None


def parse_job_posting(raw: str, url: str = "") -> JobPosting:
    """
    Parse a job extraction reply. There is no fallback here: a made-up
    job record is worse than an error, so ResponseParseFailure propagates.
    """
    data = extract_object(raw, JOB)
    return JobPosting(
        **_extras(data, JOB_KEYS, JobPosting),
        title=_optional_text(data.get("title")),
        company=_optional_text(data.get("company")),
        location=_optional_text(data.get("location")),
        salary=_optional_text(data.get("salary")),
        type=_optional_text(data.get("type")),
        description=_optional_text(data.get("description")),
        requirements=string_list(data.get("requirements")),
        benefits=string_list(data.get("benefits")),
        sponsorship=_sponsorship(data.get("sponsorship")),
        posted_date=_optional_text(data.get("postedDate")),
        job_url=_optional_text(data.get("jobUrl")) or (url or None),
    )
