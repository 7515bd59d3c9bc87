import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, NamedTuple, Optional, Sequence

from errors import PromptBuildFailure
from log_utils import get_logger
from settings import PROMPTS_DIR

LOGGER = get_logger("prompt_builder")

OPTIMIZATION_TEMPLATE = "cv-optimization-shared.txt"
COVER_LETTER_TEMPLATE = "cover-letter-shared.txt"

OPTIMIZATION_PLACEHOLDERS = ("cvText", "jobDescription", "structuredData")
COVER_LETTER_PLACEHOLDERS = OPTIMIZATION_PLACEHOLDERS + (
    "coverLetterStyle",
    "tone",
    "focusAreas",
    "hiringManager",
    "companyName",
    "jobSource",
    "useTemplate",
)

TEST_PROMPT = (
    "This is a test prompt to verify the provider configuration is working correctly. "
    'Please respond with "Test successful" if you can process this request.'
)


class RenderedPrompt(NamedTuple):
    text: str
    source: str  # "template" or "fallback"


@dataclass
class CoverLetterOptions:
    style: str = "professional"
    tone: str = "confident and enthusiastic"
    focus_areas: Sequence[str] = ()
    hiring_manager: str = ""
    company_name: str = ""
    job_source: str = ""
    use_template: bool = False


# ===================== BUILT-IN TEMPLATES =====================
# Used whenever the shared template files cannot be read. They carry the
# same placeholders and the same rules as the files under prompts/.

FALLBACK_OPTIMIZATION_TEMPLATE = (
    "You are an expert CV and job description analyst. Analyze the CV against the job description "
    "and propose concrete, line-level edits that improve ATS compatibility and job match.\n\n"
    'IMPORTANT: Put your exact model name and version in the "model" field of the JSON output. '
    'If you cannot confirm it, use "UNKNOWN".\n\n'
    "---\n"
    "CV CONTENT (verbatim):\n"
    "Each line below is a separate bullet or paragraph. Do NOT merge lines. Do NOT split lines. "
    "Do NOT reorder lines.\n"
    "{cvText}\n\n"
    "---\n"
    "JOB DESCRIPTION (verbatim):\n"
    "{jobDescription}\n\n"
    "---\n"
    "Additional structured data (if available):\n"
    "{structuredData}\n\n"
    "---\n"
    "RULES:\n"
    "1. At most one edit per line; originalBullet must be copied exactly from the CV content.\n"
    "2. Only suggest concrete improvements. No generic suggestions or placeholders "
    "(no 'add specific technologies', 'list skills', 'etc.').\n"
    "3. Do NOT invent experience, skills, employers, dates or metrics.\n"
    "4. Give a numeric overall match score from 0 to 100 in matchScore.\n"
    "5. Predict the score if all missing keywords were added in predictedMatchScoreIfKeywordsAdded.\n\n"
    "RESPONSE FORMAT (JSON only, no extra text):\n"
    "{\n"
    '  "model": "YOUR_ACTUAL_MODEL_NAME",\n'
    '  "matchScore": 0,\n'
    '  "keywords": ["keyword1"],\n'
    '  "suggestedEdits": [\n'
    '    {"section": "Section", "originalBullet": "Exact original line", '
    '"improvedBullet": "Improved line", "reason": "Why"}\n'
    "  ],\n"
    '  "overallRecommendations": ["Recommendation"],\n'
    '  "predictedMatchScoreIfKeywordsAdded": 0,\n'
    '  "jobDetails": {"company": "", "location": "", "salary": "", "contractLength": "", '
    '"jobType": "", "other": ""}\n'
    "}\n"
)

FALLBACK_COVER_LETTER_TEMPLATE = (
    "You are an experienced hiring manager writing a concise, professional cover letter.\n\n"
    "CANDIDATE CV:\n{cvText}\n\n"
    "JOB DESCRIPTION:\n{jobDescription}\n\n"
    "ADDITIONAL STRUCTURED DATA:\n{structuredData}\n\n"
    "Style: {coverLetterStyle}\n"
    "Tone: {tone}\n"
    "Focus areas: {focusAreas}\n"
    "Hiring manager: {hiringManager}\n"
    "Company: {companyName}\n"
    "Job source: {jobSource}\n"
    "Use template layout: {useTemplate}\n\n"
    "Use ONLY information from the CV. No invented facts, no placeholder fields such as [Date]. "
    "Write 3-5 short paragraphs and return only the letter text.\n"
)


# ===================== TEMPLATE LOADING =====================

def load_template(name: str, prompts_dir: Optional[Path] = None) -> str:
    path = Path(prompts_dir or PROMPTS_DIR) / name
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        raise PromptBuildFailure(f"Cannot read prompt template {path}: {exc}") from exc


def substitute(template: str, values: Dict[str, str]) -> str:
    """
    Literal placeholder substitution in a single pass.

    Substituted text is never rescanned, so a CV line that happens to
    contain "{jobDescription}" stays as written. Every placeholder in
    `values` must occur in the template.
    """
    missing = [name for name in values if "{" + name + "}" not in template]
    if missing:
        raise PromptBuildFailure(f"Template is missing placeholders: {', '.join(missing)}")
    pattern = re.compile(r"\{(" + "|".join(re.escape(name) for name in values) + r")\}")
    return pattern.sub(lambda m: values[m.group(1)], template)


def format_structured_data(structured_data: Optional[Any]) -> str:
    if structured_data is None:
        return "None"
    return json.dumps(structured_data, indent=2, ensure_ascii=False, default=str)


def _render(
    template_name: str,
    fallback_template: str,
    values: Dict[str, str],
    prompts_dir: Optional[Path],
) -> RenderedPrompt:
    try:
        template = load_template(template_name, prompts_dir)
        return RenderedPrompt(substitute(template, values), "template")
    except PromptBuildFailure as exc:
        LOGGER.warning("prompt_template_fallback", template=template_name, error=str(exc))
        return RenderedPrompt(substitute(fallback_template, values), "fallback")


# ===================== PUBLIC BUILDERS =====================

def build(
    cv_lines: Sequence[str],
    job_description: str,
    structured_data: Optional[Any] = None,
    prompts_dir: Optional[Path] = None,
) -> RenderedPrompt:
    """
    Render the CV optimization prompt.

    The CV lines are joined with newlines so each stays its own bullet in
    the prompt. `structured_data` is rendered as indented JSON, or the
    literal "None" when absent.
    """
    values = {
        "cvText": "\n".join(cv_lines),
        "jobDescription": job_description,
        "structuredData": format_structured_data(structured_data),
    }
    return _render(OPTIMIZATION_TEMPLATE, FALLBACK_OPTIMIZATION_TEMPLATE, values, prompts_dir)


def build_cover_letter(
    cv_lines: Sequence[str],
    job_description: str,
    options: Optional[CoverLetterOptions] = None,
    structured_data: Optional[Any] = None,
    prompts_dir: Optional[Path] = None,
) -> RenderedPrompt:
    options = options or CoverLetterOptions()
    values = {
        "cvText": "\n".join(cv_lines),
        "jobDescription": job_description,
        "structuredData": format_structured_data(structured_data),
        "coverLetterStyle": options.style or "professional",
        "tone": options.tone or "confident and enthusiastic",
        "focusAreas": ", ".join(a for a in options.focus_areas if a) or "None",
        "hiringManager": options.hiring_manager or "Hiring Manager",
        "companyName": options.company_name or "Not specified",
        "jobSource": options.job_source or "Not specified",
        "useTemplate": "yes" if options.use_template else "no",
    }
    return _render(COVER_LETTER_TEMPLATE, FALLBACK_COVER_LETTER_TEMPLATE, values, prompts_dir)


def build_analysis_prompt(job_description: str) -> str:
    return (
        "You are an expert HR analyst. Analyze the following job description and extract key information.\n\n"
        "Job Description:\n"
        f"{job_description}\n\n"
        "Please provide a JSON response with the following structure:\n"
        "{\n"
        '  "keywords": ["keyword1", "keyword2", "keyword3"],\n'
        '  "skills": ["skill1", "skill2", "skill3"],\n'
        '  "requirements": ["requirement1", "requirement2", "requirement3"],\n'
        '  "industry": "industry_name",\n'
        '  "level": "entry/mid/senior/executive",\n'
        '  "summary": "Brief summary of the role"\n'
        "}\n\n"
        "Focus on:\n"
        "- Technical skills and technologies\n"
        "- Soft skills and competencies\n"
        "- Experience requirements\n"
        "- Industry-specific terms\n"
        "- Action verbs and keywords that ATS systems look for\n\n"
        "Return only the JSON object, no additional text.\n"
    )


def build_job_extraction_prompt(url: str) -> str:
    return (
        "You are a job details extraction assistant. Extract the job details from the posting at this URL.\n\n"
        f"URL: {url}\n\n"
        "Return JSON in this format:\n"
        "{\n"
        '  "title": "Job Title",\n'
        '  "company": "Company Name",\n'
        '  "location": "Location (City, State/Country)",\n'
        '  "salary": "Salary range if mentioned",\n'
        '  "type": "Full-time/Part-time/Contract/Remote/Onsite/Hybrid",\n'
        '  "description": "Brief job description (2-3 sentences)",\n'
        '  "requirements": ["requirement1", "requirement2"],\n'
        '  "benefits": ["benefit1", "benefit2"],\n'
        '  "sponsorship": true,\n'
        '  "postedDate": "YYYY-MM-DD",\n'
        f'  "jobUrl": "{url}"\n'
        "}\n\n"
        "Guidelines:\n"
        "1. Extract only information clearly stated in the posting.\n"
        "2. If a field is not mentioned, use null or an empty array.\n"
        "3. For sponsorship, indicate whether visa sponsorship is mentioned.\n"
        "4. Return only valid JSON, no additional text.\n"
    )


def cv_lines_from_text(cv_text: str) -> List[str]:
    """Split pasted or patched CV text back into its non-empty lines."""
    return [line for line in (cv_text or "").splitlines() if line.strip()]
