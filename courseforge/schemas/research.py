"""Research gateway and fact-check result schemas."""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class Source(BaseModel):
    title: str
    url: str
    snippet: str = ""
    credibility: float = 0.5


class FactCheckNote(BaseModel):
    """A line of provider output that rates the accuracy of something."""
    claim: str
    verdict: Literal["accurate", "inaccurate", "partially_accurate"]
    explanation: str


class ResearchResult(BaseModel):
    query: str
    findings: str
    sources: List[Source] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)
    fact_checks: List[FactCheckNote] = Field(default_factory=list)


class Enrichment(BaseModel):
    """Outcome of optional research: applied, or skipped with a reason.

    Distinguishes "research returned nothing" from "research failed".
    """
    status: Literal["applied", "skipped"]
    result: Optional[ResearchResult] = None
    reason: Optional[str] = None

    @property
    def applied(self) -> bool:
        return self.status == "applied"


Verdict = Literal["true", "false", "partially-true", "misleading", "unverifiable"]


class ClaimVerdict(BaseModel):
    claim: str
    verdict: Verdict
    confidence: float
    evidence: List[str] = Field(default_factory=list)
    sources: List[Source] = Field(default_factory=list)
    correction: Optional[str] = None
    context: Optional[str] = None


class FactCheckReport(BaseModel):
    overall_accuracy: int
    total_claims: int
    verified_claims: int
    problematic_claims: int
    results: List[ClaimVerdict] = Field(default_factory=list)
    summary: str
    suggestions: List[str] = Field(default_factory=list)
    corrected_content: Optional[str] = None


class FactCheckHistoryItem(BaseModel):
    id: str
    job_id: str
    content_preview: str
    depth: str
    overall_accuracy: int
    total_claims: int
    report: Dict[str, Any]
    created_at: datetime

    class Config:
        from_attributes = True
