import base64
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from errors import DocumentServiceError
from log_utils import get_logger
from models import SuggestedEdit
from settings import DOC_SERVICE_TIMEOUT_S, DOC_SERVICE_URL

LOGGER = get_logger("document_service")

NOT_RUNNING_MESSAGE = "Document service is not running. Please start the Java service."


class DocumentServiceClient:
    """
    Client for the external document-generation service.

    The service owns every binary format concern: it receives the original
    .docx and the accepted edits and returns a new .docx (or a PDF).
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout_s: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = (base_url or DOC_SERVICE_URL).rstrip("/")
        self.timeout_s = timeout_s if timeout_s is not None else DOC_SERVICE_TIMEOUT_S
        self._transport = transport

    async def _post(self, path: str, payload: Dict[str, Any], result_key: str, action: str) -> bytes:
        client_kwargs: Dict[str, Any] = {"base_url": self.base_url, "timeout": self.timeout_s}
        if self._transport is not None:
            client_kwargs["transport"] = self._transport

        try:
            async with httpx.AsyncClient(**client_kwargs) as client:
                resp = await client.post(path, json=payload)
        except httpx.ConnectError as exc:
            LOGGER.error("document_service_error", path=path, error="connection refused")
            raise DocumentServiceError(NOT_RUNNING_MESSAGE, 503) from exc
        except httpx.HTTPError as exc:
            LOGGER.error("document_service_error", path=path, error=str(exc))
            raise DocumentServiceError(f"Failed to {action}: {exc}") from exc

        if resp.status_code >= 400:
            LOGGER.error("document_service_error", path=path, status=resp.status_code)
            raise DocumentServiceError(f"Failed to {action}: service answered {resp.status_code}")

        try:
            data = resp.json()
            encoded = data[result_key]
            return base64.b64decode(encoded, validate=True)
        except (ValueError, KeyError, TypeError) as exc:
            LOGGER.error("document_service_error", path=path, error="invalid response")
            raise DocumentServiceError(f"Failed to {action}: Invalid response from document service") from exc

    async def process_document(
        self,
        original_file: bytes,
        suggested_edits: Sequence[SuggestedEdit],
        accepted: Sequence[int],
        job_description: str,
        patched_text: str,
    ) -> bytes:
        """
        Ask the service for the optimized .docx.

        `accepted` holds indices into `suggested_edits`; `patched_text` is
        the exact text the user approved, handed across unchanged.
        """
        payload = {
            "originalFile": base64.b64encode(original_file).decode("ascii"),
            "acceptedEdits": sorted(accepted),
            "suggestedEdits": [edit.to_wire() for edit in suggested_edits],
            "jobDescription": job_description,
            "patchedText": patched_text,
        }
        return await self._post("/api/document/process", payload, "document", "generate optimized DOCX")

    async def export_pdf(self, docx_bytes: bytes) -> bytes:
        payload = {
            "document": base64.b64encode(docx_bytes).decode("ascii"),
            "format": "pdf",
        }
        return await self._post("/api/document/export", payload, "pdf", "export PDF")


# ===================== FILENAMES =====================

def _clean_slug(s: Any, fallback: str) -> str:
    """
    Turn 'Acme Robotics Ltd' -> 'AcmeRoboticsLtd'
    Remove spaces and weird characters so it's safe for filenames.
    """
    if not isinstance(s, str):
        return fallback
    parts = re.split(r"[^A-Za-z0-9]+", s.strip())
    slug = "".join(p[:1].upper() + p[1:] for p in parts if p)
    return slug or fallback


def company_from_job_description(job_description: str) -> str:
    jd = job_description or ""
    for pattern in (
        r"Company:\s*([A-Z][A-Za-z0-9& ]+)",
        r"\bat\s+([A-Z][A-Za-z0-9& ]+)",
        r"^([A-Z][A-Za-z0-9& ]{2,})",
    ):
        match = re.search(pattern, jd, re.MULTILINE)
        if match:
            return match.group(1).strip().split(" ")[0]
    return ""


def build_filename(job_details: Optional[Dict[str, Any]], job_description: str, kind: str = "docx") -> str:
    """
    Filename like AcmeRobotics_CV.docx, named after the hiring company.

    jobDetails.company wins; otherwise the company is guessed from the job
    description text.
    """
    company = ""
    if isinstance(job_details, dict):
        company = job_details.get("company") or ""
    if not company:
        company = company_from_job_description(job_description)
    base = _clean_slug(company, "Optimized")
    return f"{base}_CV.{kind}"


def combined_edits(
    committed: Sequence[SuggestedEdit],
    current: Sequence[SuggestedEdit],
    accepted: Sequence[int],
) -> Tuple[List[SuggestedEdit], List[int]]:
    """
    Edit list and accepted indices for the service when earlier review
    rounds were already committed: those come first, all accepted.
    """
    edits = list(committed) + list(current)
    offset = len(committed)
    indices = list(range(offset)) + [offset + i for i in sorted(accepted)]
    return edits, indices
