"""Research gateway: web research and fact grounding over a
Perplexity-compatible chat-completions API.

Provider and transport errors raise ``ResearchFailure``. Callers that treat
research as optional enrichment go through ``enrich()``, which turns a
failure into an explicit ``Enrichment(status="skipped")`` instead of an
empty-looking success.
"""

import logging
import re
from typing import List, Optional
from urllib.parse import urlparse

import httpx

from ..core.config import Settings
from ..exceptions import ResearchFailure
from ..schemas.jobs import ResearchMode
from ..schemas.research import Enrichment, FactCheckNote, ResearchResult, Source

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Source credibility tiers
# ---------------------------------------------------------------------------

HIGH_CREDIBILITY = (
    ".gov", ".edu", ".org", "reuters.com", "apnews.com", "bbc.com", "npr.org",
    "nature.com", "science.org", "nejm.org", "thelancet.com", "who.int",
    "cdc.gov", "nih.gov", "fda.gov",
)
MEDIUM_CREDIBILITY = (
    "wikipedia.org", "britannica.com", "nytimes.com", "washingtonpost.com",
    "wsj.com", "economist.com", "ft.com", "bloomberg.com",
)
LOW_CREDIBILITY = (
    "blog", "wordpress", "medium.com", "substack", "facebook", "twitter",
    "reddit", "quora",
)


def credibility_for(url: str) -> float:
    """Credibility score of a source, from its domain alone.

    Low-tier markers are checked first (``medium.com`` must not score as a
    ``.com`` news site, ``blog.example.org`` must not score as ``.org``),
    then medium, then high. Unknown domains score 0.5.
    """
    host = (urlparse(url).hostname or url).lower()
    if any(marker in host for marker in LOW_CREDIBILITY):
        return 0.3
    if any(host == d or host.endswith("." + d) for d in MEDIUM_CREDIBILITY):
        return 0.7
    for marker in HIGH_CREDIBILITY:
        if marker.startswith("."):
            if host.endswith(marker):
                return 0.9
        elif host == marker or host.endswith("." + marker):
            return 0.9
    return 0.5


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------

_URL_RE = re.compile(r"https?://[^\s)\]>\"']+")
_LIST_ITEM_RE = re.compile(r"^\s*(?:\d+\.|-|•|\*)\s*")


def extract_sources(findings: str, citations: Optional[List[str]] = None) -> List[Source]:
    """Sources from explicit citations plus every URL mentioned in the text."""
    urls: List[str] = []
    for url in list(citations or []) + _URL_RE.findall(findings):
        url = url.rstrip(".,;:")
        if url not in urls:
            urls.append(url)
    sources = []
    for url in urls:
        path_tail = urlparse(url).path.rstrip("/").rsplit("/", 1)[-1]
        sources.append(Source(
            title=path_tail or urlparse(url).hostname or "Source",
            url=url,
            credibility=credibility_for(url),
        ))
    return sources


def extract_suggestions(findings: str, limit: int = 5) -> List[str]:
    """Numbered or bulleted lines long enough to be actionable."""
    suggestions = []
    for line in findings.splitlines():
        if _LIST_ITEM_RE.match(line) and len(line) > 20:
            suggestions.append(_LIST_ITEM_RE.sub("", line, count=1).strip())
    return suggestions[:limit]


def extract_fact_checks(findings: str) -> List[FactCheckNote]:
    notes = []
    for line in findings.splitlines():
        lowered = line.lower()
        if "accurate" not in lowered:
            continue
        if "inaccurate" in lowered:
            verdict = "inaccurate"
        elif "partially" in lowered:
            verdict = "partially_accurate"
        else:
            verdict = "accurate"
        notes.append(FactCheckNote(claim=line.strip()[:50], verdict=verdict, explanation=line.strip()))
    return notes


_SYSTEM_PROMPT = (
    "You are a research assistant providing accurate, well-sourced information "
    "for educational content creation. Always cite sources with full URLs."
)


def _research_prompt(topic: str, context: str, mode: ResearchMode) -> str:
    if mode == ResearchMode.POST_GENERATION:
        return (
            f'Review and enhance the following content about "{topic}".\n'
            f"Content: {context}\n\n"
            "List, as numbered items: missing important information, outdated "
            "facts with current data, relevant examples or case studies, and "
            "additional credible sources."
        )
    if mode == ResearchMode.FACT_CHECK:
        return (
            f'Fact-check the following claim or topic: "{topic}"\n'
            f"Context: {context}\n\n"
            "Verify each claim against reliable sources, state whether it is "
            "true, false or partially true, explain why, and rate the accuracy "
            "as accurate, partially accurate, or inaccurate. Cite sources."
        )
    return (
        f'Research the topic "{topic}" comprehensively.\n'
        f"Context: {context}\n\n"
        "Provide current trends and best practices, key concepts and "
        "terminology, common challenges and solutions, and recent developments."
    )


class ResearchGateway:
    """Client for a Perplexity-compatible research API.

    Args:
        api_key: Bearer token. Empty means research is not configured.
        api_base: Base URL; ``/chat/completions`` is appended.
        model: Online research model name.
        timeout: Seconds per request.
        client: Optional pre-built ``httpx.Client`` (tests pass a MockTransport).
    """

    def __init__(
        self,
        api_key: str,
        api_base: str = "https://api.perplexity.ai",
        model: str = "llama-3.1-sonar-large-128k-online",
        timeout: float = 60.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.api_key = api_key
        self.api_base = api_base.rstrip("/")
        self.model = model
        self.timeout = timeout
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "ResearchGateway":
        return cls(
            api_key=settings.research_api_key,
            api_base=settings.research_api_base,
            model=settings.research_model,
            timeout=settings.research_timeout,
        )

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _get_client(self) -> httpx.Client:
        if self._client is None or self._client.is_closed:
            self._client = httpx.Client(base_url=self.api_base, timeout=self.timeout)
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()

    def _chat(self, messages: list, temperature: float = 0.2, max_tokens: int = 2000) -> tuple[str, List[str]]:
        """POST one chat completion. Returns (text, citation urls)."""
        if not self.is_configured():
            raise ResearchFailure("Research provider not configured (set RESEARCH_API_KEY)")
        try:
            resp = self._get_client().post(
                "/chat/completions",
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={
                    "model": self.model,
                    "messages": messages,
                    "temperature": temperature,
                    "max_tokens": max_tokens,
                    "return_citations": True,
                    "return_images": False,
                },
            )
            resp.raise_for_status()
            data = resp.json()
            text = data["choices"][0]["message"]["content"]
        except httpx.HTTPStatusError as e:
            raise ResearchFailure(f"Research provider returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ResearchFailure(f"Research provider unreachable: {e}") from e
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ResearchFailure(f"Research provider returned an unexpected payload: {e}") from e

        citations = [c for c in data.get("citations") or [] if isinstance(c, str)]
        return text or "", citations

    def research(
        self,
        topic: str,
        context: Optional[str] = None,
        mode: ResearchMode = ResearchMode.PRE_GENERATION,
    ) -> ResearchResult:
        """Research *topic*; the mode selects the framing of the request."""
        mode = ResearchMode(mode)
        findings, citations = self._chat([
            {"role": "system", "content": _SYSTEM_PROMPT},
            {"role": "user", "content": _research_prompt(topic, context or "", mode)},
        ])
        result = ResearchResult(
            query=topic,
            findings=findings,
            sources=extract_sources(findings, citations),
        )
        if mode == ResearchMode.FACT_CHECK:
            result.fact_checks = extract_fact_checks(findings)
        else:
            result.suggestions = extract_suggestions(findings)
        logger.info(
            "Research completed",
            extra={"mode": mode.value, "sources": len(result.sources)},
        )
        return result

    def enhance_content(self, content: str, findings: str) -> str:
        """Rewrite *content* incorporating *findings*, keeping its voice."""
        text, _ = self._chat(
            [
                {
                    "role": "system",
                    "content": (
                        "You are an expert content editor. Enhance the provided content with "
                        "research findings while maintaining the original voice and structure."
                    ),
                },
                {
                    "role": "user",
                    "content": (
                        "Enhance this content with the following research findings.\n\n"
                        f"Original Content:\n{content}\n\n"
                        f"Research Findings:\n{findings}\n\n"
                        "Add relevant statistics, examples and current information, and "
                        "update outdated facts. Return only the enhanced content."
                    ),
                },
            ],
            temperature=0.3,
            max_tokens=4000,
        )
        if not text.strip():
            raise ResearchFailure("Research provider returned empty enhanced content")
        return text

    def search(self, query: str, max_results: int = 5) -> List[Source]:
        """Sources for *query*; each carries the leading findings as its snippet."""
        result = self.research(query, "", ResearchMode.FACT_CHECK)
        snippet = result.findings[:200]
        return [
            source.model_copy(update={"snippet": source.snippet or snippet})
            for source in result.sources[:max_results]
        ]

    def enrich(
        self,
        topic: str,
        context: Optional[str] = None,
        mode: ResearchMode = ResearchMode.PRE_GENERATION,
    ) -> Enrichment:
        """Research as optional enrichment. Never raises ResearchFailure."""
        try:
            return Enrichment(status="applied", result=self.research(topic, context, mode))
        except ResearchFailure as e:
            logger.warning("Research enrichment skipped: %s", e.message)
            return Enrichment(status="skipped", reason=e.message)
