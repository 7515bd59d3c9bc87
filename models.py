from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

PromptSource = Literal["template", "fallback", "manual"]
# Whole scores stay int on the wire.
Score = Union[int, float]

UNKNOWN_MODEL = "UNKNOWN"


class SuggestedEdit(BaseModel):
    """
    One proposed replacement of a single document line.

    Only the response normalizer creates these, after the validity filter
    has run. Instances are frozen.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    section: Optional[str] = None
    original_text: str
    improved_text: str
    reason: str = ""

    def to_wire(self) -> Dict[str, Any]:
        # Both key spellings: the document service reads either pair.
        return {
            "section": self.section,
            "originalBullet": self.original_text,
            "improvedBullet": self.improved_text,
            "original": self.original_text,
            "suggested": self.improved_text,
            "reason": self.reason,
        }


class LocatedEdit(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    line_index: int
    original_text: str
    improved_text: str


class OptimizationResult(BaseModel):
    """
    The current answer to an optimize / recalculate / manual call.

    Unknown top-level keys from the model (analysis, recommendations,
    keywordSuggestions, ...) are kept as extras so the UI sees them as sent.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    model: str = UNKNOWN_MODEL
    match_score: Optional[Score] = None
    keywords: List[str] = Field(default_factory=list)
    suggested_edits: List[SuggestedEdit] = Field(default_factory=list)
    overall_recommendations: List[str] = Field(default_factory=list)
    job_details: Optional[Dict[str, Any]] = None
    predicted_match_score_if_keywords_added: Optional[Score] = None
    previous_match_score: Optional[Score] = None
    is_fallback: bool = False
    prompt_source: PromptSource = "template"

    def to_response(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class JobAnalysis(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    keywords: List[str] = Field(default_factory=list)
    skills: List[str] = Field(default_factory=list)
    requirements: List[str] = Field(default_factory=list)
    industry: Optional[str] = None
    level: Optional[str] = None
    summary: Optional[str] = None
    is_fallback: bool = False

    def to_response(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class JobPosting(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    title: Optional[str] = None
    company: Optional[str] = None
    location: Optional[str] = None
    salary: Optional[str] = None
    type: Optional[str] = None
    description: Optional[str] = None
    requirements: List[str] = Field(default_factory=list)
    benefits: List[str] = Field(default_factory=list)
    sponsorship: Optional[bool] = None
    posted_date: Optional[str] = None
    job_url: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")
