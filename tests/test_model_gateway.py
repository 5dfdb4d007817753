"""Tests for the LiteLLM model gateway and structured-output parsing."""

from types import SimpleNamespace
from unittest.mock import patch

import pytest

from courseforge.exceptions import FailureKind, GenerationFailure
from courseforge.services.model_gateway import ModelGateway, parse_structured
from courseforge.services.response_cache import ResponseCache


def _completion(text):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=text))])


PAYLOAD = {"system": "You are terse.", "prompt": "Say hi"}


class TestParseStructured:

    def test_plain_json(self):
        assert parse_structured('{"a": 1}') == {"a": 1}

    def test_fenced_json(self):
        assert parse_structured('```json\n{"a": 1}\n```') == {"a": 1}

    def test_object_wrapped_in_prose(self):
        text = 'Here is the outline: {"a": {"b": 2}} Let me know!'
        assert parse_structured(text) == {"a": {"b": 2}}

    def test_braces_inside_strings(self):
        text = 'Sure. {"text": "use } and { freely", "n": 1} Done.'
        assert parse_structured(text) == {"text": "use } and { freely", "n": 1}

    def test_repairs_trailing_comma(self):
        assert parse_structured('{"a": 1,}') == {"a": 1}

    def test_no_object_is_malformed(self):
        with pytest.raises(GenerationFailure) as exc_info:
            parse_structured("I cannot help with that.")
        assert exc_info.value.kind == FailureKind.MALFORMED_RESPONSE

    def test_json_array_is_malformed(self):
        with pytest.raises(GenerationFailure) as exc_info:
            parse_structured("[1, 2, 3]")
        assert exc_info.value.kind == FailureKind.MALFORMED_RESPONSE


class TestGenerate:

    def test_returns_completion_text(self):
        gateway = ModelGateway("test/model")
        with patch("litellm.completion", return_value=_completion("hello")) as completion:
            assert gateway.generate(PAYLOAD) == "hello"
        kwargs = completion.call_args.kwargs
        assert kwargs["model"] == "test/model"
        assert kwargs["messages"][0] == {"role": "system", "content": "You are terse."}
        assert kwargs["messages"][1] == {"role": "user", "content": "Say hi"}

    def test_options_override_defaults(self):
        gateway = ModelGateway("test/model", max_tokens=100, temperature=0.1)
        with patch("litellm.completion", return_value=_completion("ok")) as completion:
            gateway.generate(PAYLOAD, options={"temperature": 0.9})
        assert completion.call_args.kwargs["temperature"] == 0.9
        assert completion.call_args.kwargs["max_tokens"] == 100

    def test_second_identical_call_served_from_cache(self):
        gateway = ModelGateway("test/model", cache=ResponseCache())
        with patch("litellm.completion", return_value=_completion("cached")) as completion:
            first = gateway.generate(PAYLOAD)
            second = gateway.generate(PAYLOAD)
        assert first == second == "cached"
        assert completion.call_count == 1

    def test_without_cache_every_call_hits_provider(self):
        gateway = ModelGateway("test/model", cache=None)
        with patch("litellm.completion", return_value=_completion("fresh")) as completion:
            gateway.generate(PAYLOAD)
            gateway.generate(PAYLOAD)
        assert completion.call_count == 2

    def test_provider_error_becomes_generation_failure(self):
        gateway = ModelGateway("test/model", cache=ResponseCache())
        with patch("litellm.completion", side_effect=RuntimeError("rate limited")):
            with pytest.raises(GenerationFailure) as exc_info:
                gateway.generate(PAYLOAD)
        assert exc_info.value.kind == FailureKind.PROVIDER_ERROR
        assert "rate limited" in exc_info.value.message
        assert len(gateway.cache) == 0

    def test_empty_response_is_malformed(self):
        gateway = ModelGateway("test/model")
        with patch("litellm.completion", return_value=_completion("   ")):
            with pytest.raises(GenerationFailure) as exc_info:
                gateway.generate(PAYLOAD)
        assert exc_info.value.kind == FailureKind.MALFORMED_RESPONSE

    def test_unconfigured_model_fails_without_call(self):
        gateway = ModelGateway("")
        assert gateway.is_configured() is False
        with patch("litellm.completion") as completion:
            with pytest.raises(GenerationFailure):
                gateway.generate(PAYLOAD)
        completion.assert_not_called()

    def test_generate_structured_parses_fenced_output(self):
        gateway = ModelGateway("test/model")
        with patch("litellm.completion", return_value=_completion('```json\n{"title": "T"}\n```')):
            assert gateway.generate_structured(PAYLOAD) == {"title": "T"}


class TestGenerateImage:

    def test_base64_image_becomes_data_url(self):
        gateway = ModelGateway("test/model", image_model="dall-e-3")
        response = SimpleNamespace(data=[SimpleNamespace(b64_json="QUJD", url=None)])
        with patch("litellm.image_generation", return_value=response) as image_generation:
            url = gateway.generate_image("a red apple", "watercolor")
        assert url == "data:image/png;base64,QUJD"
        assert "watercolor style" in image_generation.call_args.kwargs["prompt"]

    def test_url_image_returned_as_is(self):
        gateway = ModelGateway("test/model", image_model="dall-e-3")
        response = SimpleNamespace(data=[SimpleNamespace(b64_json=None, url="https://img.test/1.png")])
        with patch("litellm.image_generation", return_value=response):
            assert gateway.generate_image("a red apple") == "https://img.test/1.png"

    def test_no_image_model_configured(self):
        gateway = ModelGateway("test/model", image_model="")
        with pytest.raises(GenerationFailure):
            gateway.generate_image("a red apple")

    def test_provider_error(self):
        gateway = ModelGateway("test/model", image_model="dall-e-3")
        with patch("litellm.image_generation", side_effect=RuntimeError("boom")):
            with pytest.raises(GenerationFailure) as exc_info:
                gateway.generate_image("a red apple")
        assert exc_info.value.kind == FailureKind.PROVIDER_ERROR
