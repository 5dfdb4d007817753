"""Model gateway: uniform text and image generation over LiteLLM.

The gateway never retries. Every provider error surfaces as a
``GenerationFailure`` and the orchestrator decides what to do with it.
Successful text completions are cached in an injected ``ResponseCache``;
bypassing the cache (``cache=None``) changes latency, never results.
"""

import json
import logging
import re
from typing import Any, Optional

from ..core.config import Settings
from ..exceptions import FailureKind, GenerationFailure
from .response_cache import ResponseCache

logger = logging.getLogger(__name__)

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*\n?")
_FENCE_CLOSE = re.compile(r"\n?```\s*$")


def _first_balanced_object(text: str) -> Optional[str]:
    """Return the first balanced ``{...}`` region, honouring quoted strings."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        # Unbalanced from this brace; try the next opening brace.
        start = text.find("{", start + 1)
    return None


def parse_structured(text: str) -> dict:
    """Parse model output that is expected to be a JSON object.

    Tries, in order: the whole text, the first balanced ``{...}`` region,
    and a json_repair pass over that region (or the unfenced text).

    Raises:
        GenerationFailure: kind MALFORMED_RESPONSE when nothing yields a dict.
    """
    raw = (text or "").strip()
    if raw.startswith("```"):
        raw = _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", raw))

    try:
        parsed = json.loads(raw)
        if isinstance(parsed, dict):
            return parsed
    except json.JSONDecodeError:
        pass

    region = _first_balanced_object(raw)
    if region is not None:
        try:
            parsed = json.loads(region)
            if isinstance(parsed, dict):
                return parsed
        except json.JSONDecodeError:
            pass

    candidate = region if region is not None else raw[raw.find("{"):] if "{" in raw else ""
    if candidate:
        from json_repair import repair_json

        repaired = repair_json(candidate, return_objects=True)
        if isinstance(repaired, dict) and repaired:
            logger.debug("Structured response needed json_repair")
            return repaired

    raise GenerationFailure(
        f"Model response is not a JSON object: {raw[:120]!r}",
        kind=FailureKind.MALFORMED_RESPONSE,
    )


class ModelGateway:
    """Text and image generation over LiteLLM.

    Args:
        model: LiteLLM model string for text (e.g. ``anthropic/claude-3-sonnet-20240229``).
        api_key: Provider API key. Empty means "let LiteLLM read its env vars".
        api_base: Optional custom endpoint.
        max_tokens: Default completion budget.
        temperature: Default sampling temperature.
        cache: Shared response cache, or None to disable caching.
        image_model: LiteLLM model string for images.
        timeout: Seconds before a provider call is abandoned.
    """

    def __init__(
        self,
        model: str,
        api_key: str = "",
        api_base: str = "",
        max_tokens: int = 4000,
        temperature: float = 0.7,
        cache: Optional[ResponseCache] = None,
        image_model: str = "",
        timeout: float = 120.0,
    ) -> None:
        self.model = model
        self.api_key = api_key
        self.api_base = api_base
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.cache = cache
        self.image_model = image_model
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "ModelGateway":
        return cls(
            model=settings.model_name,
            api_key=settings.model_api_key,
            api_base=settings.model_api_base,
            max_tokens=settings.model_max_tokens,
            temperature=settings.model_temperature,
            cache=ResponseCache(settings.cache_max_entries, settings.cache_ttl_seconds),
            image_model=settings.image_model,
        )

    def is_configured(self) -> bool:
        return bool(self.model)

    def _provider_kwargs(self) -> dict:
        kwargs: dict = {"timeout": self.timeout}
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        return kwargs

    def generate(
        self,
        payload: dict,
        model_id: Optional[str] = None,
        options: Optional[dict] = None,
    ) -> str:
        """Run one completion and return its text.

        Args:
            payload: ``{"system": str, "prompt": str}`` or ``{"messages": [...]}``.
            model_id: Overrides the configured model for this call.
            options: ``max_tokens`` / ``temperature`` overrides.
        """
        model_id = model_id or self.model
        if not model_id:
            raise GenerationFailure("No text model configured (set MODEL_NAME)")
        options = options or {}
        max_tokens = options.get("max_tokens", self.max_tokens)
        temperature = options.get("temperature", self.temperature)

        messages = payload.get("messages")
        if not messages:
            messages = []
            if payload.get("system"):
                messages.append({"role": "system", "content": payload["system"]})
            messages.append({"role": "user", "content": payload.get("prompt", "")})

        cache_key = None
        if self.cache is not None:
            cache_key = ResponseCache.make_key(
                model_id,
                {"messages": messages, "max_tokens": max_tokens, "temperature": temperature},
            )
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.debug("Model response served from cache", extra={"model": model_id})
                return cached

        try:
            import litellm

            response = litellm.completion(
                model=model_id,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
                **self._provider_kwargs(),
            )
            text = response.choices[0].message.content
        except Exception as e:
            logger.warning("Model call failed: %s", e, extra={"model": model_id})
            raise GenerationFailure(f"Model provider error: {e}") from e

        if not text or not text.strip():
            raise GenerationFailure(
                "Model returned an empty response", kind=FailureKind.MALFORMED_RESPONSE
            )

        if cache_key is not None:
            self.cache.set(cache_key, text)
        return text

    def generate_structured(
        self,
        payload: dict,
        model_id: Optional[str] = None,
        options: Optional[dict] = None,
    ) -> dict:
        """Run one completion expected to return a JSON object."""
        return parse_structured(self.generate(payload, model_id, options))

    def generate_image(self, prompt: str, style: str = "realistic") -> str:
        """Generate one image and return it as a data URL (or provider URL)."""
        if not self.image_model:
            raise GenerationFailure("No image model configured (set IMAGE_MODEL)")

        enhanced = f"{prompt}, {style} style, high quality, professional, detailed"
        try:
            import litellm

            response = litellm.image_generation(
                model=self.image_model,
                prompt=enhanced,
                n=1,
                response_format="b64_json",
                **self._provider_kwargs(),
            )
            image = response.data[0]
        except Exception as e:
            logger.warning("Image generation failed: %s", e, extra={"model": self.image_model})
            raise GenerationFailure(f"Image provider error: {e}") from e

        b64: Any = getattr(image, "b64_json", None)
        if b64:
            return f"data:image/png;base64,{b64}"
        url = getattr(image, "url", None)
        if url:
            return url
        raise GenerationFailure(
            "Image provider returned no image data", kind=FailureKind.MALFORMED_RESPONSE
        )
