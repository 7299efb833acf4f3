"""Tests for InferenceGateway task entry points."""

import random
from collections.abc import AsyncIterator
from unittest.mock import AsyncMock

import pytest

from academic_gateway import InferenceGateway
from academic_gateway.errors import (
    AllLinksFailedError,
    AuthError,
    ConfigurationError,
    QuotaError,
    TransientError,
)
from academic_gateway.exam import ExamAnalysis, ExamQuestion
from academic_gateway.gateway import FAILED_ANSWER_PLACEHOLDER
from academic_gateway.llm.providers import GeminiProvider, LLMProvider
from academic_gateway.llm.providers.base import ChatStream
from academic_gateway.llm.schemas import Attachment, LLMRequest, LLMResponse
from academic_gateway.prompts import DEFAULT_TITLE

# -- test helpers -------------------------------------------------------


def _resp(content: str, provider: str = "p") -> LLMResponse:
    return LLMResponse(content=content, provider=provider, model_id="m")


def _providers() -> dict[str, LLMProvider]:
    gemini = AsyncMock(spec=GeminiProvider)
    gemini.provider_name = "gemini"
    groq = AsyncMock(spec=LLMProvider)
    groq.provider_name = "groq"
    openrouter = AsyncMock(spec=LLMProvider)
    openrouter.provider_name = "openrouter"
    return {"gemini": gemini, "groq": groq, "openrouter": openrouter}


def _gateway(settings, providers: dict[str, LLMProvider], sleep: AsyncMock | None = None):
    return InferenceGateway(
        settings,
        providers=providers,
        rng=random.Random(0),
        sleep=sleep or AsyncMock(),
    )


def _question(text: str = "Define entropy.", **kwargs: object) -> ExamQuestion:
    return ExamQuestion(label="Q1", text=text, marks=5, suggested_answer="disorder", **kwargs)


async def _chunks(*deltas: str) -> AsyncIterator[str]:
    for delta in deltas:
        yield delta


def _chat_stream(*deltas: str) -> ChatStream:
    return ChatStream(
        _chunks(*deltas),
        extract=lambda chunk: chunk,
        classify=lambda exc: TransientError(str(exc)),
        close=AsyncMock(),
    )


_ANALYSIS = ExamAnalysis(
    exam_title="Physics 101",
    total_marks=5,
    questions=[_question()],
)

# -- tests --------------------------------------------------------------


class TestAnalyze:
    async def test_primary_gemini_serves(self, settings_factory) -> None:
        providers = _providers()
        providers["gemini"].complete_json = AsyncMock(  # type: ignore[method-assign]
            return_value=(_ANALYSIS, _resp("{}", "gemini"))
        )
        gateway = _gateway(settings_factory(gemini_api_key="g1"), providers)

        result = await gateway.analyze(["data:image/jpeg;base64,QUJD", "REVG"])

        assert result.exam_title == "Physics 101"
        request, api_key, schema = providers["gemini"].complete_json.await_args.args  # type: ignore[attr-defined]
        assert api_key == "g1"
        assert schema is ExamAnalysis
        assert request.json_mode is True
        assert request.thinking_level == "HIGH"
        assert request.attachments == (
            Attachment(mime_type="image/jpeg", data="QUJD"),
            Attachment(mime_type="image/png", data="REVG"),
        )

    async def test_falls_through_to_groq(self, settings_factory) -> None:
        providers = _providers()
        providers["gemini"].complete_json = AsyncMock(  # type: ignore[method-assign]
            side_effect=QuotaError("429", status_code=429)
        )
        providers["groq"].complete_json = AsyncMock(  # type: ignore[method-assign]
            return_value=(_ANALYSIS, _resp("{}", "groq"))
        )
        gateway = _gateway(
            settings_factory(gemini_api_key="g1", groq_api_key="q1"), providers
        )

        result = await gateway.analyze([Attachment(mime_type="image/png", data="QQ==")])

        assert result == _ANALYSIS
        assert providers["gemini"].complete_json.await_count == 2  # type: ignore[attr-defined]
        request = providers["groq"].complete_json.await_args.args[0]  # type: ignore[attr-defined]
        assert request.model == "meta-llama/llama-4-maverick-17b-128e-instruct"
        assert request.temperature == 0.2

    async def test_every_layer_fails(self, settings_factory) -> None:
        providers = _providers()
        for p in providers.values():
            p.complete_json = AsyncMock(side_effect=TransientError("down"))  # type: ignore[method-assign]
        gateway = _gateway(
            settings_factory(
                gemini_api_key="g", groq_api_key="q", openrouter_api_key="o"
            ),
            providers,
        )

        with pytest.raises(AllLinksFailedError) as exc_info:
            await gateway.analyze(["QQ=="])
        assert exc_info.value.layers_attempted == 5

    async def test_no_keys_raises_configuration_error(
        self, settings, no_network
    ) -> None:
        gateway = InferenceGateway(settings)
        with pytest.raises(ConfigurationError):
            await gateway.analyze(["QQ=="])
        await gateway.aclose()


class TestRefine:
    async def test_openrouter_first(self, settings_factory) -> None:
        providers = _providers()
        providers["openrouter"].complete = AsyncMock(  # type: ignore[method-assign]
            return_value=_resp("<b>answer</b>")
        )
        gateway = _gateway(
            settings_factory(gemini_api_key="g", openrouter_api_key="o"), providers
        )

        answer = await gateway.refine(_question(), "gemini-2.5-pro")

        assert answer == "<b>answer</b>"
        providers["gemini"].complete.assert_not_awaited()  # type: ignore[attr-defined]
        request = providers["openrouter"].complete.await_args.args[0]  # type: ignore[attr-defined]
        assert "Define entropy." in request.prompt
        assert request.system_prompt == "You are a precise academic answer generator."

    async def test_gemini_when_openrouter_has_no_keys(self, settings_factory) -> None:
        providers = _providers()
        providers["gemini"].complete = AsyncMock(  # type: ignore[method-assign]
            return_value=_resp("from gemini")
        )
        gateway = _gateway(settings_factory(gemini_api_key="g"), providers)

        assert await gateway.refine(_question(), "gemini-2.5-pro") == "from gemini"
        request = providers["gemini"].complete.await_args.args[0]  # type: ignore[attr-defined]
        assert request.model == "gemini-2.5-pro"

    async def test_empty_answer_uses_suggested(self, settings_factory) -> None:
        providers = _providers()
        providers["openrouter"].complete = AsyncMock(  # type: ignore[method-assign]
            return_value=_resp("")
        )
        gateway = _gateway(settings_factory(openrouter_api_key="o"), providers)
        assert await gateway.refine(_question(), "x", "openrouter") == "disorder"


class TestRefineMany:
    async def test_failed_question_becomes_placeholder(self, settings_factory) -> None:
        async def complete(request: LLMRequest, api_key: str) -> LLMResponse:
            if "Question three" in request.prompt:
                raise TransientError("nope")
            return _resp("answer")

        providers = _providers()
        providers["openrouter"].complete = AsyncMock(side_effect=complete)  # type: ignore[method-assign]
        providers["gemini"].complete = AsyncMock(side_effect=complete)  # type: ignore[method-assign]
        gateway = _gateway(
            settings_factory(gemini_api_key="g", openrouter_api_key="o"), providers
        )
        questions = [
            _question(f"Question {word}")
            for word in ("one", "two", "three", "four", "five")
        ]
        progress: list[tuple[int, int]] = []

        report = await gateway.refine_many(
            questions,
            "gemini-2.5-pro",
            on_progress=lambda done, total: progress.append((done, total)),
        )

        assert len(report.results) == 5
        assert report.failures == 1
        failed = [r for r in report.results if r.failed]
        assert len(failed) == 1
        assert failed[0].text == "Question three"
        assert failed[0].refined_answer == FAILED_ANSWER_PLACEHOLDER
        assert [r.text for r in report.results] == [q.text for q in questions]
        assert progress == [(3, 5), (5, 5)]


class TestGenerateImage:
    async def test_backoff_on_quota(self, settings_factory) -> None:
        providers = _providers()
        quota = QuotaError("429", status_code=429)
        providers["gemini"].generate_image = AsyncMock(  # type: ignore[attr-defined]
            side_effect=[quota, quota, "data:image/png;base64,AAA"]
        )
        sleep = AsyncMock()
        gateway = _gateway(settings_factory(gemini_api_key="g1,g2"), providers, sleep)

        uri = await gateway.generate_image("free body diagram")

        assert uri == "data:image/png;base64,AAA"
        assert [c.args[0] for c in sleep.await_args_list] == [2.0, 4.0]
        request, api_key, aspect = providers["gemini"].generate_image.await_args.args  # type: ignore[attr-defined]
        assert api_key in {"g1", "g2"}
        assert aspect == "4:3"
        assert "free body diagram" in request.prompt
        assert request.model == "gemini-2.5-flash-image"

    async def test_auth_error_not_retried(self, settings_factory) -> None:
        providers = _providers()
        providers["gemini"].generate_image = AsyncMock(  # type: ignore[attr-defined]
            side_effect=AuthError("403", status_code=403)
        )
        sleep = AsyncMock()
        gateway = _gateway(settings_factory(gemini_api_key="g"), providers, sleep)

        with pytest.raises(AuthError):
            await gateway.generate_image("circuit")
        sleep.assert_not_awaited()

    async def test_missing_key(self, settings) -> None:
        providers = _providers()
        gateway = _gateway(settings, providers)
        with pytest.raises(ConfigurationError, match="Missing Gemini API key"):
            await gateway.generate_image("circuit")
        providers["gemini"].generate_image.assert_not_awaited()  # type: ignore[attr-defined]

    async def test_override_key_used(self, settings) -> None:
        providers = _providers()
        providers["gemini"].generate_image = AsyncMock(return_value="uri")  # type: ignore[attr-defined]
        gateway = _gateway(settings, providers)
        gateway.set_key_override("gemini", "user-key")

        assert await gateway.generate_image("circuit", aspect_ratio="1:1") == "uri"
        assert providers["gemini"].generate_image.await_args.args[1:] == (  # type: ignore[attr-defined]
            "user-key",
            "1:1",
        )


class TestGenerateTitle:
    async def test_empty_history(self, settings) -> None:
        assert await _gateway(settings, _providers()).generate_title([]) == DEFAULT_TITLE

    async def test_title_from_groq(self, settings_factory) -> None:
        providers = _providers()
        providers["groq"].complete = AsyncMock(  # type: ignore[method-assign]
            return_value=_resp("  Entropy Basics \n")
        )
        gateway = _gateway(settings_factory(groq_api_key="q"), providers)

        title = await gateway.generate_title(
            [
                {"role": "user", "content": "What is entropy?"},
                {"role": "assistant", "content": "A measure of disorder."},
            ]
        )

        assert title == "Entropy Basics"
        request = providers["groq"].complete.await_args.args[0]  # type: ignore[attr-defined]
        assert '"What is entropy?"' in request.prompt
        assert request.max_tokens == 20

    async def test_all_links_fail(self, settings_factory) -> None:
        providers = _providers()
        for p in providers.values():
            p.complete = AsyncMock(side_effect=TransientError("down"))  # type: ignore[method-assign]
        gateway = _gateway(
            settings_factory(gemini_api_key="g", groq_api_key="q", openrouter_api_key="o"),
            providers,
        )
        assert await gateway.generate_title([{"role": "user", "content": "hi"}]) == (
            DEFAULT_TITLE
        )

    async def test_no_keys(self, settings) -> None:
        providers = _providers()
        gateway = _gateway(settings, providers)
        assert await gateway.generate_title([{"role": "user", "content": "hi"}]) == (
            DEFAULT_TITLE
        )
        providers["groq"].complete.assert_not_awaited()  # type: ignore[attr-defined]


class TestStreamChat:
    async def test_streams_deltas(self, settings_factory) -> None:
        providers = _providers()
        providers["groq"].open_stream = AsyncMock(  # type: ignore[method-assign]
            return_value=_chat_stream("Hel", "lo")
        )
        gateway = _gateway(settings_factory(groq_api_key="q"), providers)

        deltas = [
            d
            async for d in gateway.stream_chat(
                [{"role": "user", "content": "hi"}], "flash"
            )
        ]
        assert "".join(deltas) == "Hello"

    async def test_unknown_mode(self, settings) -> None:
        with pytest.raises(ValueError):
            _gateway(settings, _providers()).stream_chat([], "turbo")


class TestLifecycle:
    async def test_aclose_closes_every_adapter(self, settings) -> None:
        providers = _providers()
        await _gateway(settings, providers).aclose()
        for p in providers.values():
            p.aclose.assert_awaited_once()  # type: ignore[attr-defined]
