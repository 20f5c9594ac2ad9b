from datetime import datetime
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Any, Dict, List, Optional


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Stage(str, Enum):
    PROFILE = "A"
    SUBMISSION = "B"
    SYNTHESIS = "C"


class FileKind(str, Enum):
    CV = "cv"
    REPORT = "report"


class DocumentType(str, Enum):
    JOB_DESCRIPTION = "job_description"
    CASE_BRIEF = "case_brief"
    CV_RUBRIC = "cv_rubric"
    PROJECT_RUBRIC = "project_rubric"


ARTIFACT_VERSION = "1.0"


# ---------------------------------------------------------------------------
# Stage payloads. Generative output is validated against these models and
# every numeric field is clamped into its documented range.
# ---------------------------------------------------------------------------

def _clamp(value: Any, low: float, high: float) -> float:
    if isinstance(value, bool):
        raise ValueError("expected a number, got a boolean")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"expected a number, got {value!r}")
    if number != number:  # NaN
        raise ValueError("expected a number, got NaN")
    return max(low, min(high, number))


def _clamp_score(value: Any) -> int:
    return int(round(_clamp(value, 1, 5)))


def _feedback_text(value: Any) -> str:
    if isinstance(value, list):
        value = "\n".join(f"- {str(x).strip()}" for x in value if x is not None and str(x).strip())
    if not isinstance(value, str):
        raise ValueError("feedback must be a string or list of strings")
    if not value.strip():
        raise ValueError("feedback must not be empty")
    return value.strip()


class _Parameters(BaseModel):
    @field_validator("*", mode="before")
    @classmethod
    def _clamp_parameter(cls, value):
        return _clamp_score(value)

    def mean(self) -> float:
        values = list(self.model_dump().values())
        return round(sum(values) / len(values), 2)


class CVParameters(_Parameters):
    technical_skills: int
    experience_level: int
    relevant_achievements: int
    cultural_fit: int


class ProjectParameters(_Parameters):
    correctness: int
    code_quality: int
    resilience: int
    documentation: int
    creativity: int


class CVEvaluationResult(BaseModel):
    parameters: CVParameters
    weighted_average_1_to_5: Optional[float] = None
    cv_match_rate: float
    cv_feedback: str

    @field_validator("weighted_average_1_to_5", mode="before")
    @classmethod
    def _clamp_average(cls, value):
        return None if value is None else _clamp(value, 1, 5)

    @field_validator("cv_match_rate", mode="before")
    @classmethod
    def _clamp_match_rate(cls, value):
        return _clamp(value, 0, 1)

    @field_validator("cv_feedback", mode="before")
    @classmethod
    def _ensure_text(cls, value):
        return _feedback_text(value)

    @model_validator(mode="after")
    def _derive_average(self):
        if self.weighted_average_1_to_5 is None:
            self.weighted_average_1_to_5 = self.parameters.mean()
        return self


class ProjectEvaluationResult(BaseModel):
    parameters: ProjectParameters
    project_score: Optional[float] = None
    project_feedback: str

    @field_validator("project_score", mode="before")
    @classmethod
    def _clamp_project_score(cls, value):
        return None if value is None else _clamp(value, 1, 5)

    @field_validator("project_feedback", mode="before")
    @classmethod
    def _ensure_text(cls, value):
        return _feedback_text(value)

    @model_validator(mode="after")
    def _derive_score(self):
        if self.project_score is None:
            self.project_score = self.parameters.mean()
        return self


class SynthesisResult(BaseModel):
    overall_summary: str

    @field_validator("overall_summary", mode="before")
    @classmethod
    def _ensure_text(cls, value):
        if not isinstance(value, str) or not value.strip():
            raise ValueError("overall_summary must be a non-empty string")
        return value.strip()


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------

class ContextSource(BaseModel):
    document_type: Optional[str] = None
    chunk_text: str
    score: float


class RetrievedContext(BaseModel):
    context: str = ""
    sources: List[ContextSource] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

class UploadResponse(BaseModel):
    cv_id: str
    report_id: str

class EvaluateRequest(BaseModel):
    job_title: str = Field(..., min_length=1)
    cv_id: str
    report_id: str

class EvaluationResult(BaseModel):
    cv_match_rate: float
    cv_feedback: str
    project_score: float
    project_feedback: str
    overall_summary: str

class JobStatusResponse(BaseModel):
    id: str
    status: JobStatus
    result: Optional[EvaluationResult] = None
    error_code: Optional[str] = None
    attempts: Optional[int] = None
    message: Optional[str] = None


class ReferenceDocumentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    type: str
    version: str
    path: str
    content_hash: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class IngestDocumentRequest(BaseModel):
    path: str = Field(..., min_length=1)
    document_type: DocumentType
    version: str = "1.0"

class IngestDirectoryRequest(BaseModel):
    path: Optional[str] = None

class UpdateDocumentRequest(BaseModel):
    path: str = Field(..., min_length=1)
    version: str = Field(..., min_length=1)

class IngestFailure(BaseModel):
    file: str
    error: str

class IngestDirectoryResponse(BaseModel):
    documents: List[ReferenceDocumentOut]
    failures: List[IngestFailure]
    count: int

class DocumentStats(BaseModel):
    total_documents: int
    total_chunks: int
    documents_by_type: Dict[str, int]

class DocumentListResponse(BaseModel):
    documents: List[ReferenceDocumentOut]
    stats: DocumentStats

class ReconcileResponse(BaseModel):
    checked: int
    orphaned_chunk_ids: List[str]
    purged: bool
