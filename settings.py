import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError, field_validator

from log_utils import get_logger

load_dotenv()

LOGGER = get_logger("settings")

BASE_DIR = Path(__file__).resolve().parent

# You can override these via environment variables:
#   PROMPTS_DIR=/srv/prompts
#   MODEL_SETTINGS_PATH=/srv/data/model-settings.json
#   DOC_SERVICE_URL=http://doc-service:8080
PROMPTS_DIR = Path(os.getenv("PROMPTS_DIR", str(BASE_DIR / "prompts")))
MODEL_SETTINGS_PATH = Path(os.getenv("MODEL_SETTINGS_PATH", str(BASE_DIR / "data" / "model-settings.json")))
DOC_SERVICE_URL = os.getenv("DOC_SERVICE_URL", "http://localhost:8080")
DOC_SERVICE_TIMEOUT_S = float(os.getenv("DOC_SERVICE_TIMEOUT_S", "30"))

MAX_UPLOAD_BYTES = 10 * 1024 * 1024
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

FEATURE_IDS = ("jobDescription", "generateCV", "jobHunt", "jobTracker")
PROVIDER_IDS = ("gemini", "gemini-vertex", "openrouter", "openai", "local")
DEFAULT_PROVIDER = "gemini"


class FeatureSetting(BaseModel):
    provider: str

    @field_validator("provider")
    @classmethod
    def _known_provider(cls, value: str) -> str:
        if value not in PROVIDER_IDS:
            raise ValueError(f"Must be one of: {', '.join(PROVIDER_IDS)}")
        return value


class ModelSettings(BaseModel):
    """
    Which provider answers each logical feature.

    Handed to the gateway explicitly; nothing reads provider choice from
    module globals.
    """

    jobDescription: FeatureSetting
    generateCV: FeatureSetting
    jobHunt: FeatureSetting
    jobTracker: FeatureSetting

    def provider_for(self, feature_id: str) -> str:
        if feature_id not in FEATURE_IDS:
            raise KeyError(feature_id)
        return getattr(self, feature_id).provider


def default_model_settings() -> ModelSettings:
    return ModelSettings(**{fid: FeatureSetting(provider=DEFAULT_PROVIDER) for fid in FEATURE_IDS})


def _strip_legacy_keys(raw: Dict[str, Any]) -> Dict[str, Any]:
    # Older builds stored a masterData tab here.
    cleaned = dict(raw)
    cleaned.pop("masterData", None)
    return cleaned


def validate_model_settings(raw: Dict[str, Any]) -> ModelSettings:
    """
    Validate a settings payload coming from the UI.

    Raises ValueError with a readable message naming the first bad feature.
    """
    if not isinstance(raw, dict):
        raise ValueError("Settings must be a JSON object.")
    cleaned = _strip_legacy_keys(raw)
    for fid in FEATURE_IDS:
        entry = cleaned.get(fid)
        if not isinstance(entry, dict) or not entry.get("provider"):
            raise ValueError(f"Invalid settings for {fid}. Each feature must have a provider.")
        if entry["provider"] not in PROVIDER_IDS:
            raise ValueError(f"Invalid provider for {fid}. Must be one of: {', '.join(PROVIDER_IDS)}")
    try:
        return ModelSettings(**{fid: cleaned[fid] for fid in FEATURE_IDS})
    except ValidationError as exc:
        raise ValueError(str(exc)) from exc


def load_model_settings(path: Optional[Path] = None) -> ModelSettings:
    """
    Read persisted settings, writing the defaults on first use.

    A corrupt or partial file never blocks the app: defaults are returned.
    """
    path = path or MODEL_SETTINGS_PATH
    if not path.exists():
        settings = default_model_settings()
        save_model_settings(settings, path)
        return settings

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        LOGGER.warning("settings_unreadable", path=str(path), error=str(exc))
        return default_model_settings()

    had_legacy = isinstance(raw, dict) and "masterData" in raw
    try:
        settings = validate_model_settings(raw)
    except ValueError as exc:
        LOGGER.warning("settings_invalid", path=str(path), error=str(exc))
        return default_model_settings()

    if had_legacy:
        save_model_settings(settings, path)
    return settings


def save_model_settings(settings: ModelSettings, path: Optional[Path] = None) -> None:
    path = path or MODEL_SETTINGS_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(settings.model_dump(exclude_none=True), indent=2), encoding="utf-8")
    LOGGER.info("settings_saved", path=str(path))
