from io import BytesIO
from typing import Any, Dict, List, Optional

from fastapi import Body, FastAPI, File, Form, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

import pipeline
import prompt_builder
from docx_lines import extract_lines_from_docx_bytes
from document_service import DocumentServiceClient, build_filename, combined_edits
from errors import (
    DocumentServiceError,
    PromptBuildFailure,
    ProviderFailure,
    ResponseParseFailure,
    ReviewError,
    UploadRejected,
)
from llm_client import ModelGateway, build_default_providers
from log_utils import configure_logging, get_logger
from models import OptimizationResult
from review import ReviewSession, SessionStore
from settings import (
    DOCX_MIME,
    MAX_UPLOAD_BYTES,
    MODEL_SETTINGS_PATH,
    PROVIDER_IDS,
    load_model_settings,
    save_model_settings,
    validate_model_settings,
)

configure_logging("cv-optimizer")
LOGGER = get_logger("api")

FALLBACK_WARNING = (
    "The model response could not be parsed; showing placeholder suggestions. "
    "Results may be unreliable, try again or switch provider."
)


# ---------- Request models ----------
class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AnalyzeRequest(_CamelModel):
    job_description: str


class SuggestionsRequest(_CamelModel):
    cv_text: str
    job_description: str
    structured_data: Optional[Any] = None


class ManualPromptRequest(_CamelModel):
    cv_text: str
    job_description: str
    structured_data: Optional[Any] = None


class ManualResponseRequest(_CamelModel):
    response: str
    session_id: Optional[str] = None
    cv_text: Optional[str] = None
    job_description: Optional[str] = None


class CoverLetterRequest(_CamelModel):
    cv_text: str
    job_description: str
    style: str = "professional"
    tone: str = "confident and enthusiastic"
    focus_areas: List[str] = []
    hiring_manager: str = ""
    company_name: str = ""
    job_source: str = ""
    use_template: bool = False
    structured_data: Optional[Any] = None


class JobUrlRequest(_CamelModel):
    url: str


class ModelCheckRequest(_CamelModel):
    provider: str


app = FastAPI(title="ATS CV Optimizer")

# Allow the frontend dev server to call the backend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition"],
)

app.state.settings_path = MODEL_SETTINGS_PATH
app.state.gateway = ModelGateway(build_default_providers(), load_model_settings(MODEL_SETTINGS_PATH))
app.state.sessions = SessionStore()
app.state.documents = DocumentServiceClient()
app.state.prompts_dir = None


# =======================
# ERROR RESPONSES
# =======================

def _error(status_code: int, error: str, message: Optional[str] = None) -> JSONResponse:
    content: Dict[str, Any] = {"error": error}
    if message:
        content["message"] = message
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(ProviderFailure)
async def _provider_failure(request, exc: ProviderFailure):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.user_message, "message": exc.detail, "cause": exc.cause.value, "provider": exc.provider},
    )


@app.exception_handler(ReviewError)
async def _review_error(request, exc: ReviewError):
    return _error(exc.status_code, exc.detail)


@app.exception_handler(UploadRejected)
async def _upload_rejected(request, exc: UploadRejected):
    return _error(exc.status_code, exc.detail)


@app.exception_handler(DocumentServiceError)
async def _document_service_error(request, exc: DocumentServiceError):
    return _error(exc.status_code, "Document generation failed", exc.detail)


@app.exception_handler(ResponseParseFailure)
async def _parse_failure(request, exc: ResponseParseFailure):
    return _error(exc.status_code, "The model response could not be understood", exc.detail)


def _with_warning(payload: Dict[str, Any], result: Optional[OptimizationResult]) -> Dict[str, Any]:
    if result is not None and result.is_fallback:
        payload["warning"] = FALLBACK_WARNING
    return payload


async def _read_docx(upload: UploadFile) -> bytes:
    filename = (upload.filename or "").lower()
    if upload.content_type != DOCX_MIME and not filename.endswith(".docx"):
        raise UploadRejected("Only .docx files are allowed")
    data = await upload.read()
    if not data:
        raise UploadRejected("CV file is empty")
    if len(data) > MAX_UPLOAD_BYTES:
        raise UploadRejected("CV file is larger than 10MB", 413)
    return data


def _lines_from_docx(data: bytes) -> List[str]:
    try:
        return extract_lines_from_docx_bytes(data)
    except ValueError as e:
        raise UploadRejected(str(e)) from e
    except Exception as e:
        LOGGER.warning("docx_unreadable", error=str(e))
        raise UploadRejected(f"Failed to read DOCX: {e}") from e


def _session(session_id: str) -> ReviewSession:
    return app.state.sessions.get(session_id)


@app.get("/health")
def health():
    return {"status": "ok"}


# ============================================================
# ===================== OPTIMIZE ENDPOINTS ===================
# ============================================================

@app.get("/api/optimize/prompt-template")
def get_prompt_template():
    """Raw shared optimization template, for the manual copy/paste flow."""
    try:
        text = prompt_builder.load_template(prompt_builder.OPTIMIZATION_TEMPLATE, app.state.prompts_dir)
        source = "template"
    except PromptBuildFailure:
        text = prompt_builder.FALLBACK_OPTIMIZATION_TEMPLATE
        source = "fallback"
    return {"template": text, "promptSource": source}


@app.post("/api/optimize/extract-cv-text")
async def extract_cv_text(cv: UploadFile = File(...)):
    data = await _read_docx(cv)
    lines = _lines_from_docx(data)
    return {"cvText": "\n".join(lines), "cvLines": lines}


@app.post("/api/optimize/analyze-jd")
async def analyze_jd(req: AnalyzeRequest):
    jd = req.job_description.strip()
    if not jd:
        return _error(400, "Job description is required")

    analysis = await pipeline.analyze_job_description(app.state.gateway, jd)
    payload = {"analysis": analysis.to_response()}
    if analysis.is_fallback:
        payload["warning"] = FALLBACK_WARNING
    return payload


@app.post("/api/optimize/optimize-cv")
async def optimize_cv(
    cv: UploadFile = File(...),
    jobDescription: str = Form(...),
):
    """
    Upload a CV and a job description, get suggested edits.

    Opens a review session; every edit starts out accepted.
    """
    jd = (jobDescription or "").strip()
    if not jd:
        return _error(400, "Job description is required")

    data = await _read_docx(cv)
    lines = _lines_from_docx(data)
    if not lines:
        return _error(400, "No text could be extracted from the CV")

    session = app.state.sessions.create(lines, jd, {"lines": lines})
    result = await pipeline.optimize_cv(app.state.gateway, session, app.state.prompts_dir)
    payload = session.snapshot()
    payload["cvText"] = "\n".join(lines)
    return _with_warning(payload, result)


@app.post("/api/optimize/suggestions")
async def get_suggestions(req: SuggestionsRequest):
    if not req.cv_text.strip() or not req.job_description.strip():
        return _error(400, "CV text and job description are required")

    result = await pipeline.suggestions(
        app.state.gateway, req.cv_text, req.job_description, req.structured_data, app.state.prompts_dir
    )
    return _with_warning({"suggestions": result.to_response()}, result)


@app.post("/api/optimize/manual-prompt")
def manual_prompt(req: ManualPromptRequest):
    rendered = prompt_builder.build(
        prompt_builder.cv_lines_from_text(req.cv_text), req.job_description, req.structured_data, app.state.prompts_dir
    )
    return {"prompt": rendered.text, "promptSource": rendered.source}


@app.post("/api/optimize/manual-response")
def manual_response(req: ManualResponseRequest):
    """
    Load a response pasted by the user into a review session.

    Either continue an existing session or start one from cvText and
    jobDescription.
    """
    if not req.response.strip():
        return _error(400, "Response text is required")

    if req.session_id:
        session = _session(req.session_id)
    else:
        lines = prompt_builder.cv_lines_from_text(req.cv_text or "")
        jd = (req.job_description or "").strip()
        if not lines or not jd:
            return _error(400, "cvText and jobDescription are required without a sessionId")
        session = app.state.sessions.create(lines, jd)

    result = pipeline.load_manual_response(session, req.response)
    return _with_warning(session.snapshot(), result)


@app.post("/api/optimize/cover-letter")
async def cover_letter(req: CoverLetterRequest):
    if not req.cv_text.strip() or not req.job_description.strip():
        return _error(400, "CV text and job description are required")

    options = prompt_builder.CoverLetterOptions(
        style=req.style,
        tone=req.tone,
        focus_areas=req.focus_areas,
        hiring_manager=req.hiring_manager,
        company_name=req.company_name,
        job_source=req.job_source,
        use_template=req.use_template,
    )
    letter = await pipeline.generate_cover_letter(
        app.state.gateway,
        prompt_builder.cv_lines_from_text(req.cv_text),
        req.job_description,
        options,
        req.structured_data,
        app.state.prompts_dir,
    )
    return {"coverLetter": letter.text, "promptSource": letter.prompt_source}


@app.post("/api/optimize/extract-job-from-url")
async def extract_job_from_url(req: JobUrlRequest):
    url = req.url.strip()
    if not url.lower().startswith(("http://", "https://")):
        return _error(400, "A valid http(s) URL is required")

    posting = await pipeline.extract_job_from_url(app.state.gateway, url)
    return {"job": posting.to_response()}


# ============================================================
# ===================== REVIEW ENDPOINTS =====================
# ============================================================

@app.get("/api/review/{session_id}")
def get_review(session_id: str):
    return _session(session_id).snapshot()


@app.post("/api/review/{session_id}/toggle/{index}")
def toggle_edit(session_id: str, index: int):
    session = _session(session_id)
    session.state.toggle(index)
    return session.snapshot()


@app.post("/api/review/{session_id}/accept-all")
def accept_all(session_id: str):
    session = _session(session_id)
    session.state.accept_all()
    return session.snapshot()


@app.post("/api/review/{session_id}/reject-all")
def reject_all(session_id: str):
    session = _session(session_id)
    session.state.reject_all()
    return session.snapshot()


@app.get("/api/review/{session_id}/diff/{index}")
def edit_diff(session_id: str, index: int):
    spans = _session(session_id).diff(index)
    return {"index": index, "spans": [span.to_dict() for span in spans]}


@app.get("/api/review/{session_id}/patched")
def patched_text(session_id: str):
    session = _session(session_id)
    return {"patchedText": session.patched_text(), "ambiguousEdits": session.ambiguous_edits()}


@app.post("/api/review/{session_id}/recalculate")
async def recalculate(session_id: str):
    session = _session(session_id)
    if session.result is None:
        return _error(400, "Nothing to recalculate yet; optimize the CV first")

    result = await pipeline.recalculate_session(app.state.gateway, session, app.state.prompts_dir)
    return _with_warning(session.snapshot(), result)


# ============================================================
# ===================== DOCUMENT ENDPOINTS ===================
# ============================================================

async def _optimized_docx(session: ReviewSession, data: bytes) -> bytes:
    edits, accepted = combined_edits(session.committed_edits, session.edits, sorted(session.state.accepted))
    return await app.state.documents.process_document(
        data, edits, accepted, session.job_description, session.patched_text()
    )


@app.post("/api/document/generate-docx")
async def generate_docx(
    cv: UploadFile = File(...),
    sessionId: str = Form(...),
):
    """
    Regenerate the uploaded CV with the session's accepted edits.
    """
    session = _session(sessionId)
    data = await _read_docx(cv)
    docx_bytes = await _optimized_docx(session, data)

    job_details = session.result.job_details if session.result else None
    filename = build_filename(job_details, session.job_description, kind="docx")
    return StreamingResponse(
        BytesIO(docx_bytes),
        media_type=DOCX_MIME,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.post("/api/document/export-pdf")
async def export_pdf(
    cv: UploadFile = File(...),
    sessionId: str = Form(...),
):
    session = _session(sessionId)
    data = await _read_docx(cv)
    docx_bytes = await _optimized_docx(session, data)
    pdf_bytes = await app.state.documents.export_pdf(docx_bytes)

    job_details = session.result.job_details if session.result else None
    filename = build_filename(job_details, session.job_description, kind="pdf")
    return StreamingResponse(
        BytesIO(pdf_bytes),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ============================================================
# ===================== SETTINGS ENDPOINTS ===================
# ============================================================

@app.get("/api/settings/model-settings")
def get_model_settings():
    return app.state.gateway.settings.model_dump()


@app.post("/api/settings/model-settings")
def update_model_settings(raw: Dict[str, Any] = Body(...)):
    try:
        new_settings = validate_model_settings(raw)
    except ValueError as e:
        return _error(400, str(e))

    save_model_settings(new_settings, app.state.settings_path)
    app.state.gateway.update_settings(new_settings)
    return {"success": True, "settings": new_settings.model_dump()}


@app.post("/api/settings/test-model")
async def check_model(req: ModelCheckRequest):
    if req.provider not in PROVIDER_IDS:
        return _error(400, f"Unknown provider. Must be one of: {', '.join(PROVIDER_IDS)}")
    return await pipeline.check_provider(app.state.gateway, req.provider)
