"""Claim extraction and verdicts for fact-check jobs.

Extraction and verdict logic are pure functions over text and sources.
``FactChecker`` adds the research calls. Research is the whole point of a
fact-check, so a ``ResearchFailure`` while checking a claim propagates and
fails the job; only the optional context lookup degrades silently.
"""

import logging
import re
from typing import Iterable, List, Optional

from ..exceptions import ResearchFailure
from ..schemas.jobs import FactCheckDepth
from ..schemas.research import ClaimVerdict, FactCheckReport, Source
from .research_gateway import ResearchGateway

logger = logging.getLogger(__name__)

CLAIM_LIMITS = {
    FactCheckDepth.BASIC: 5,
    FactCheckDepth.THOROUGH: 15,
    FactCheckDepth.COMPREHENSIVE: 30,
}

_SENTENCE_RE = re.compile(r"[^.!?]+[.!?]+")

_FACTUAL_PATTERNS = [
    re.compile(r"\d+%"),
    re.compile(r"\$[\d,]+"),
    re.compile(r"\d{4}"),
    re.compile(r"according to", re.I),
    re.compile(r"research shows", re.I),
    re.compile(r"studies indicate", re.I),
    re.compile(r"data suggests", re.I),
    re.compile(r"statistics show", re.I),
    re.compile(r"survey found", re.I),
    re.compile(r"report states", re.I),
    re.compile(r"\b(?:is|are|was|were)\b.*\d+", re.I),
    re.compile(r"\b(?:increase[sd]?|decrease[sd]?|grew|fell)\b.*\d+", re.I),
]

_DEFINITIVE_WORDS = frozenset({
    "is", "are", "was", "were", "has", "have", "had",
    "will", "would", "should", "must", "can", "cannot",
    "always", "never", "every", "all", "none", "most",
})

_SUPPORTING = ("true", "correct", "confirmed")
_CONTRADICTING = ("false", "incorrect", "myth", "debunked")
_PARTIAL = ("partially", "partly", "somewhat")

CORRECTION_FOOTER = (
    "\n\n---\n*This content has been fact-checked. "
    "{count} claim(s) were corrected or clarified.*"
)


def split_sentences(text: str) -> List[str]:
    return [s.strip() for s in _SENTENCE_RE.findall(text) if s.strip()]


def has_factual_indicator(sentence: str) -> bool:
    return any(p.search(sentence) for p in _FACTUAL_PATTERNS)


def looks_like_factual_claim(sentence: str) -> bool:
    """Definitive statement that is not a question or an instruction."""
    if "?" in sentence or sentence.startswith(("Please", "Let")):
        return False
    words = set(re.sub(r"[^\w\s']", " ", sentence.lower()).split())
    return not words.isdisjoint(_DEFINITIVE_WORDS)


def extract_claims(content: str, depth: FactCheckDepth = FactCheckDepth.THOROUGH) -> List[str]:
    """Candidate factual claims, in document order, capped by depth."""
    depth = FactCheckDepth(depth)
    claims: List[str] = []
    for sentence in split_sentences(content):
        if sentence in claims:
            continue
        if has_factual_indicator(sentence) or (
            depth == FactCheckDepth.COMPREHENSIVE and looks_like_factual_claim(sentence)
        ):
            claims.append(sentence)
    return claims[:CLAIM_LIMITS[depth]]


def _count(sources: Iterable[Source], markers: tuple) -> int:
    return sum(1 for s in sources if any(m in s.snippet.lower() for m in markers))


def _first_snippet_with(sources: List[Source], markers: tuple, fallback: str) -> str:
    for source in sources:
        if any(m in source.snippet.lower() for m in markers):
            return source.snippet
    return fallback


def determine_verdict(claim: str, sources: List[Source]) -> ClaimVerdict:
    """Verdict from corroborating vs contradicting snippets.

    A side needs a strict majority and at least two snippets to win.
    """
    if not sources:
        return ClaimVerdict(claim=claim, verdict="unverifiable", confidence=0.0)

    n = len(sources)
    supporting = _count(sources, _SUPPORTING)
    contradicting = _count(sources, _CONTRADICTING)
    partial = _count(sources, _PARTIAL)
    correction = None

    if contradicting > supporting and contradicting >= 2:
        verdict, confidence = "false", contradicting / n
        correction = _first_snippet_with(
            sources, ("actually", "correct", "fact"),
            "This claim appears to be incorrect based on available evidence.",
        )
    elif supporting > contradicting and supporting >= 2:
        verdict, confidence = "true", supporting / n
    elif partial >= 2 or (partial > 0 and supporting > 0):
        verdict, confidence = "partially-true", 0.5 + (partial / n) * 0.3
        correction = _first_snippet_with(
            sources, ("however", "but", "although"),
            "This claim requires additional context or qualification.",
        )
    elif _count(sources, ("misleading",)) > 0:
        verdict, confidence = "misleading", 0.7
        correction = _first_snippet_with(
            sources, ("context", "misleading", "important"),
            "This claim may be misleading without proper context.",
        )
    else:
        verdict, confidence = "unverifiable", 0.3

    return ClaimVerdict(
        claim=claim,
        verdict=verdict,
        confidence=round(confidence, 3),
        evidence=[s.snippet for s in sources[:3] if s.snippet],
        sources=sources,
        correction=correction,
    )


def is_verified(result: ClaimVerdict) -> bool:
    return result.verdict == "true" and result.confidence > 0.7


def is_problematic(result: ClaimVerdict) -> bool:
    return result.verdict in ("false", "misleading") or (
        result.verdict == "partially-true" and result.confidence > 0.7
    )


def _plural(n: int, noun: str = "claim") -> str:
    return f"{n} {noun}{'s' if n != 1 else ''}"


def summarize(results: List[ClaimVerdict]) -> str:
    counts = {
        "verified as accurate": sum(r.verdict == "true" for r in results),
        "found to be false": sum(r.verdict == "false" for r in results),
        "partially true": sum(r.verdict == "partially-true" for r in results),
        "misleading": sum(r.verdict == "misleading" for r in results),
        "could not be verified": sum(r.verdict == "unverifiable" for r in results),
    }
    parts = [f"{_plural(n)} {label}" for label, n in counts.items() if n]
    if not parts:
        return "No factual claims were identified for verification."
    return ", ".join(parts) + "."


def suggest(results: List[ClaimVerdict]) -> List[str]:
    suggestions: List[str] = []
    false_claims = [r for r in results if r.verdict == "false"]
    if false_claims:
        suggestions.append(f"Correct {_plural(len(false_claims), 'false claim')} identified in the content")
        for r in false_claims:
            if r.correction:
                suggestions.append(f'Replace: "{r.claim[:50]}..." with accurate information')
    if any(r.verdict == "misleading" for r in results):
        suggestions.append("Add context to clarify potentially misleading statements")
    if any(r.verdict == "unverifiable" for r in results):
        suggestions.append("Consider adding citations for claims that cannot be independently verified")
    if any(r.confidence < 0.5 for r in results):
        suggestions.append("Review and strengthen claims with low verification confidence")
    if any(any(s.credibility < 0.5 for s in r.sources) for r in results):
        suggestions.append("Consider using more authoritative sources for factual claims")
    if not suggestions and results:
        average = sum(r.confidence for r in results) / len(results)
        suggestions.append(
            "Content appears to be factually accurate"
            if average > 0.8
            else "Consider adding more citations to strengthen credibility"
        )
    return suggestions


def apply_corrections(content: str, results: List[ClaimVerdict]) -> str:
    """Rewrite false claims and annotate misleading or partial ones."""
    corrected = content
    changed = 0
    for r in results:
        if r.verdict == "false" and r.correction:
            if r.claim in corrected:
                corrected = corrected.replace(r.claim, r.correction, 1)
                changed += 1
            else:
                lead = " ".join(r.claim.split()[:10])
                if lead and lead in corrected:
                    corrected = corrected.replace(lead, f"{lead} [Correction: {r.correction}]", 1)
                    changed += 1
        elif r.verdict == "misleading" and r.claim in corrected:
            note = r.context or r.correction
            if note:
                corrected = corrected.replace(r.claim, f"{r.claim} [Context: {note}]", 1)
                changed += 1
        elif r.verdict == "partially-true" and r.correction and r.claim in corrected:
            corrected = corrected.replace(r.claim, f"{r.claim} [Note: {r.correction}]", 1)
            changed += 1
    if changed:
        corrected += CORRECTION_FOOTER.format(count=changed)
    return corrected


class FactChecker:
    """Researches each extracted claim and aggregates a report."""

    def __init__(self, research: ResearchGateway):
        self.research = research

    def _context_for(self, claim: str, topic: Optional[str]) -> Optional[str]:
        query = f"{claim} in the context of {topic}" if topic else f"background and context: {claim}"
        try:
            sources = self.research.search(query, max_results=2)
        except ResearchFailure as e:
            logger.warning("Claim context lookup skipped: %s", e.message)
            return None
        return sources[0].snippet if sources else None

    def check_claim(self, claim: str, topic: Optional[str] = None, include_context: bool = False) -> ClaimVerdict:
        sources = self.research.search(f"fact check: {claim}", max_results=5)
        result = determine_verdict(claim, sources)
        if include_context:
            result.context = self._context_for(claim, topic)
        return result

    def check(
        self,
        content: str,
        depth: FactCheckDepth = FactCheckDepth.BASIC,
        include_context: bool = False,
        topic: Optional[str] = None,
        auto_correct: bool = False,
    ) -> FactCheckReport:
        claims = extract_claims(content, depth)
        results = [self.check_claim(c, topic, include_context) for c in claims]

        verified = sum(1 for r in results if is_verified(r))
        problematic = sum(1 for r in results if is_problematic(r))
        accuracy = round(verified / len(results) * 100) if results else 100

        report = FactCheckReport(
            overall_accuracy=accuracy,
            total_claims=len(results),
            verified_claims=verified,
            problematic_claims=problematic,
            results=results,
            summary=summarize(results),
            suggestions=suggest(results),
        )
        if auto_correct and problematic:
            report.corrected_content = apply_corrections(content, results)
        return report
