"""
Tests for backend-assisted extraction.

Covers prompt construction and truncation, tolerant completion parsing,
the retry loop, provider selection, and the orchestrator including its
deterministic fallback. HTTP backends are mocked with respx.
"""

import asyncio
import json
import math

import httpx
import pytest
import respx

from ledgerscan.core.errors import ConfigurationError, GenerationResponseError
from ledgerscan.services.candidates import extract_candidates
from ledgerscan.services.generation.backends import (
    GenerationBackend,
    GroqBackend,
    OllamaBackend,
    OpenAICompatibleBackend,
    OpenRouterBackend,
    TogetherBackend,
    build_backend,
)
from ledgerscan.services.generation.orchestrator import (
    DISABLED_WARNING,
    EMPTY_TEXT_WARNING,
    FALLBACK_WARNING,
    GenerationOrchestrator,
)
from ledgerscan.services.generation.parsing import coerce_record, parse_generation_response
from ledgerscan.services.generation.prompts import (
    KEYWORD_START,
    CandidateHints,
    build_messages,
    build_user_prompt,
    truncate_text,
)
from ledgerscan.services.generation.retry import RetryPolicy, is_retryable, run_with_retry

OLLAMA_CHAT = "http://ollama.test:11434/api/chat"
ACME_TEXT = "Acme Corp\nInvoice #: INV-10023\nDate: 15/01/2024\nTotal: $123.45"

ACME_COMPLETION = {
    "vendorName": "Acme Corp",
    "invoiceDate": "2024-01-15",
    "totalAmount": 123.45,
    "currency": "USD",
    "invoiceNumber": "INV-10023",
    "vatAmount": None,
    "subtotalAmount": None,
    "lineItems": [],
    "confidence": {"vendorName": 0.95, "invoiceDate": 0.9, "totalAmount": 0.95, "currency": 0.9},
    "warnings": [],
}


async def no_sleep(_seconds):
    return None


def ollama_reply(content) -> httpx.Response:
    if not isinstance(content, str):
        content = json.dumps(content)
    return httpx.Response(200, json={"message": {"role": "assistant", "content": content}})


def refuse_connection(request):
    raise httpx.ConnectError("Connection refused", request=request)


class ScriptedBackend(GenerationBackend):
    """Backend that sleeps, then answers or raises, counting calls"""

    name = "scripted"

    def __init__(self, delay: float = 0.0, error: BaseException | None = None):
        super().__init__("scripted-model")
        self.delay = delay
        self.error = error
        self.calls = 0

    async def generate(self, messages):
        self.calls += 1
        await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return json.dumps(ACME_COMPLETION)

    @classmethod
    def from_settings(cls, settings):
        return cls()


def make_orchestrator(**kwargs) -> GenerationOrchestrator:
    return GenerationOrchestrator(
        OllamaBackend(base_url="http://ollama.test:11434"),
        retry_policy=RetryPolicy(max_retries=2, backoff_seconds=0),
        sleep=no_sleep,
        **kwargs,
    )


# ========== Prompts ==========

class TestTruncation:
    def test_short_text_unchanged(self):
        assert truncate_text("Total: 5.00", budget=100) == "Total: 5.00"

    def test_keeps_head_tail_and_middle_keyword_lines(self):
        filler = [f"filler line {i:03d} xxxxxxxxxxxxxxxx" for i in range(200)]
        lines = ["Vendor Header"] + filler[:100] + ["TOTAL DUE 99.00"] + filler[100:] + ["Thank you"]
        result = truncate_text("\n".join(lines), budget=800)

        assert len(result) <= 800
        assert result.startswith("Vendor Header")
        assert result.endswith("Thank you")
        assert KEYWORD_START in result
        assert "TOTAL DUE 99.00" in result

    def test_single_long_line_is_sliced(self):
        text = "a" * 2000 + "b" * 3000
        result = truncate_text(text, budget=800)

        assert len(result) <= 800
        assert result.startswith("a" * 300)
        assert result.endswith("b" * 300)


class TestPrompts:
    def test_hints_section(self):
        hints = CandidateHints.from_candidates(extract_candidates(ACME_TEXT))
        prompt = build_user_prompt(ACME_TEXT, hints)

        assert "HINTS from pattern matching" in prompt
        assert "Likely total: 123.45" in prompt
        assert "Likely currency: USD" in prompt
        assert "Vendor candidates: Acme Corp" in prompt
        assert prompt.endswith("DOCUMENT TEXT:\n" + ACME_TEXT)

    def test_no_hints_section_when_nothing_found(self):
        prompt = build_user_prompt("hello", CandidateHints())
        assert "HINTS" not in prompt

    def test_messages_order(self):
        messages = build_messages(ACME_TEXT, CandidateHints())
        assert [m["role"] for m in messages] == ["system", "user"]
        assert "vendorName" in messages[0]["content"]


# ========== Parsing ==========

class TestParseGenerationResponse:
    def test_plain_json(self):
        assert parse_generation_response('{"totalAmount": 5}') == {"totalAmount": 5}

    def test_code_fence_and_prose_ignored(self):
        raw = 'Here is the data:\n```json\n{"vendorName": "Acme"}\n```\nHope this helps!'
        assert parse_generation_response(raw) == {"vendorName": "Acme"}

    @pytest.mark.parametrize("raw", ["", "no json here", "[1, 2, 3]", "{not: valid}"])
    def test_unparsable(self, raw):
        with pytest.raises(GenerationResponseError) as exc_info:
            parse_generation_response(raw)
        assert exc_info.value.raw_response == raw


class TestCoerceRecord:
    def test_full_completion(self):
        record = coerce_record(ACME_COMPLETION)
        assert record.vendor_name == "Acme Corp"
        assert record.total_amount == 123.45
        assert record.confidence.total_amount == 0.95

    def test_string_total_is_parsed(self):
        assert coerce_record({"totalAmount": "₪1,234.50"}).total_amount == 1234.50

    def test_garbage_total_becomes_nan(self):
        assert math.isnan(coerce_record({"totalAmount": "about forty"}).total_amount)

    def test_missing_confidence_keys_are_neutral(self):
        record = coerce_record({"confidence": {"totalAmount": 0.9}})
        assert record.confidence.total_amount == 0.9
        assert record.confidence.vendor_name == 0.5

    def test_confidence_is_clamped(self):
        record = coerce_record({"confidence": {"currency": 1.7, "vendorName": -2, "invoiceDate": "high"}})
        assert record.confidence.currency == 1.0
        assert record.confidence.vendor_name == 0.0
        assert record.confidence.invoice_date == 0.5

    def test_line_items_filtered(self):
        record = coerce_record({
            "lineItems": [
                {"description": "Shampoo", "quantity": 1, "unitPrice": "24.90", "amount": 24.9},
                {"description": "", "amount": 3},
                "garbage",
            ]
        })
        assert len(record.line_items) == 1
        assert record.line_items[0].unit_price == 24.90


# ========== Retry ==========

class TestRetry:
    def test_retryable_classification(self):
        request = httpx.Request("POST", "http://x")
        assert is_retryable(httpx.ConnectError("refused", request=request))
        assert is_retryable(TimeoutError())
        assert is_retryable(GenerationResponseError("bad"))
        assert is_retryable(httpx.HTTPStatusError("x", request=request, response=httpx.Response(429)))
        assert is_retryable(httpx.HTTPStatusError("x", request=request, response=httpx.Response(503)))
        assert not is_retryable(httpx.HTTPStatusError("x", request=request, response=httpx.Response(401)))
        assert not is_retryable(ValueError("bug"))

    def test_succeeds_after_transient_failures(self):
        calls = []
        delays = []

        async def operation():
            calls.append(1)
            if len(calls) < 3:
                raise TimeoutError()
            return "ok"

        async def record_sleep(seconds):
            delays.append(seconds)

        policy = RetryPolicy(max_retries=2, backoff_seconds=1.0, backoff_factor=2.0)
        result = asyncio.run(run_with_retry(operation, policy, record_sleep))

        assert result.ok
        assert result.value == "ok"
        assert result.attempts == 3
        assert delays == [1.0, 2.0]

    def test_permanent_error_stops_immediately(self):
        calls = []

        async def operation():
            calls.append(1)
            raise ValueError("bug")

        result = asyncio.run(run_with_retry(operation, RetryPolicy(), no_sleep))

        assert not result.ok
        assert result.attempts == 1
        assert isinstance(result.error, ValueError)

    def test_backoff_is_capped(self):
        policy = RetryPolicy(backoff_seconds=10, backoff_factor=10, max_backoff_seconds=30)
        assert policy.delay_for(3) == 30


# ========== Backends ==========

class TestBackends:
    @respx.mock
    def test_ollama_payload_and_content(self):
        route = respx.post(OLLAMA_CHAT).mock(return_value=ollama_reply('{"a": 1}'))
        backend = OllamaBackend(base_url="http://ollama.test:11434/", model="llama3.2:3b")

        content = asyncio.run(backend.generate([{"role": "user", "content": "hi"}]))

        assert content == '{"a": 1}'
        body = json.loads(route.calls.last.request.content)
        assert body["format"] == "json"
        assert body["stream"] is False
        assert body["model"] == "llama3.2:3b"

    @respx.mock
    def test_groq_bearer_auth_and_json_mode(self):
        route = respx.post("https://api.groq.com/openai/v1/chat/completions").mock(
            return_value=httpx.Response(200, json={
                "choices": [{"message": {"content": '{"b": 2}'}}],
                "usage": {"prompt_tokens": 10, "completion_tokens": 5},
            })
        )
        backend = GroqBackend(api_key="gsk-test")

        content = asyncio.run(backend.generate([{"role": "user", "content": "hi"}]))

        assert content == '{"b": 2}'
        request = route.calls.last.request
        assert request.headers["Authorization"] == "Bearer gsk-test"
        assert json.loads(request.content)["response_format"] == {"type": "json_object"}

    def test_together_has_no_json_mode(self):
        assert "response_format" not in TogetherBackend(api_key="k").payload([])

    def test_openrouter_extra_headers(self):
        headers = OpenRouterBackend(api_key="k").headers()
        assert headers["HTTP-Referer"]
        assert headers["X-Title"] == "ledgerscan"

    @pytest.mark.parametrize("backend_class", [GroqBackend, TogetherBackend, OpenRouterBackend, OpenAICompatibleBackend])
    def test_hosted_backend_requires_key(self, backend_class):
        with pytest.raises(ConfigurationError):
            backend_class(api_key=None)

    @respx.mock
    def test_http_error_raises(self):
        respx.post(OLLAMA_CHAT).mock(return_value=httpx.Response(500))
        backend = OllamaBackend(base_url="http://ollama.test:11434")
        with pytest.raises(httpx.HTTPStatusError):
            asyncio.run(backend.generate([]))


class TestBuildBackend:
    def test_default_is_ollama(self, test_settings):
        backend = build_backend(test_settings)
        assert isinstance(backend, OllamaBackend)
        assert backend.base_url == "http://ollama.test:11434"

    def test_unknown_provider_falls_back_to_ollama(self, test_settings):
        settings = test_settings.model_copy(update={"llm_provider": "mystery"})
        assert isinstance(build_backend(settings), OllamaBackend)

    @pytest.mark.parametrize("provider", ["none", "disabled", "OFF"])
    def test_disabled(self, test_settings, provider):
        assert build_backend(test_settings.model_copy(update={"llm_provider": provider})) is None

    def test_missing_key_is_configuration_error(self, test_settings):
        settings = test_settings.model_copy(update={"llm_provider": "groq", "llm_api_key": None})
        with pytest.raises(ConfigurationError):
            build_backend(settings)

    def test_hosted_provider_with_key(self, test_settings):
        settings = test_settings.model_copy(
            update={"llm_provider": "together", "llm_api_key": "k", "llm_model": "custom-model"}
        )
        backend = build_backend(settings)
        assert isinstance(backend, TogetherBackend)
        assert backend.model == "custom-model"


# ========== Orchestrator ==========

class TestOrchestrator:
    @respx.mock
    def test_successful_extraction(self):
        route = respx.post(OLLAMA_CHAT).mock(return_value=ollama_reply(ACME_COMPLETION))
        outcome = asyncio.run(make_orchestrator().run(ACME_TEXT, extract_candidates(ACME_TEXT)))

        assert route.call_count == 1
        assert not outcome.used_fallback
        assert outcome.attempts == 1
        assert outcome.error is None
        assert outcome.record.vendor_name == "Acme Corp"
        assert outcome.record.total_amount == 123.45
        assert outcome.record.currency == "USD"
        assert outcome.record.warnings == []

    @respx.mock
    def test_backend_unreachable_uses_fallback(self):
        route = respx.post(OLLAMA_CHAT).mock(side_effect=refuse_connection)
        outcome = asyncio.run(make_orchestrator().run(ACME_TEXT, extract_candidates(ACME_TEXT)))
        record = outcome.record

        assert route.call_count == 3
        assert outcome.used_fallback
        assert "failed after 3 attempt(s)" in outcome.error
        assert any("fallback" in w for w in record.warnings)
        assert record.total_amount == 123.45
        assert record.currency == "USD"
        assert record.vendor_name == "Acme Corp"
        assert record.invoice_date == "2024-01-15"
        assert record.confidence.total_amount <= 0.3

    @respx.mock
    def test_non_retryable_status_stops_after_one_call(self):
        route = respx.post(OLLAMA_CHAT).mock(return_value=httpx.Response(401))
        outcome = asyncio.run(make_orchestrator().run(ACME_TEXT, extract_candidates(ACME_TEXT)))

        assert route.call_count == 1
        assert outcome.used_fallback
        assert "HTTP 401" in outcome.error

    @respx.mock
    def test_unparsable_completion_is_retried(self):
        route = respx.post(OLLAMA_CHAT).mock(
            side_effect=[ollama_reply("Sorry, I cannot help with that."), ollama_reply(ACME_COMPLETION)]
        )
        outcome = asyncio.run(make_orchestrator().run(ACME_TEXT, extract_candidates(ACME_TEXT)))

        assert route.call_count == 2
        assert outcome.attempts == 2
        assert not outcome.used_fallback

    @respx.mock
    def test_field_rules_applied_to_backend_output(self):
        completion = dict(ACME_COMPLETION, totalAmount=-5, currency="NIS", invoiceDate="15/01/2024")
        respx.post(OLLAMA_CHAT).mock(return_value=ollama_reply(completion))
        record = asyncio.run(make_orchestrator().extract(ACME_TEXT, extract_candidates(ACME_TEXT)))

        assert record.total_amount is None
        assert record.confidence.total_amount == 0.0
        assert "Invalid totalAmount extracted" in record.warnings
        assert record.currency == "ILS"
        assert record.invoice_date == "2024-01-15"

    def test_slow_backend_times_out_each_attempt(self):
        backend = ScriptedBackend(delay=5.0)
        orchestrator = GenerationOrchestrator(
            backend,
            retry_policy=RetryPolicy(max_retries=2, backoff_seconds=0),
            timeout_seconds=0.05,
            sleep=no_sleep,
        )
        outcome = asyncio.run(orchestrator.run(ACME_TEXT, extract_candidates(ACME_TEXT)))

        assert backend.calls == 3
        assert outcome.attempts == 3
        assert outcome.used_fallback
        assert "failed after 3 attempt(s): timeout" in outcome.error
        assert outcome.record.total_amount == 123.45

    def test_programming_error_in_backend_propagates(self):
        backend = ScriptedBackend(error=AttributeError("'NoneType' object has no attribute 'get'"))
        orchestrator = GenerationOrchestrator(backend, sleep=no_sleep)

        with pytest.raises(AttributeError):
            asyncio.run(orchestrator.run(ACME_TEXT, extract_candidates(ACME_TEXT)))
        assert backend.calls == 1

    def test_disabled_backend_uses_fallback(self):
        orchestrator = GenerationOrchestrator(backend=None)
        outcome = asyncio.run(orchestrator.run(ACME_TEXT, extract_candidates(ACME_TEXT)))

        assert outcome.used_fallback
        assert outcome.attempts == 0
        assert outcome.error is None
        assert DISABLED_WARNING in outcome.record.warnings

    @respx.mock
    def test_empty_text_skips_backend(self):
        route = respx.post(OLLAMA_CHAT).mock(return_value=ollama_reply(ACME_COMPLETION))
        record = asyncio.run(make_orchestrator().extract("   ", extract_candidates("   ")))

        assert route.call_count == 0
        assert EMPTY_TEXT_WARNING in record.warnings
        assert record.total_amount is None
        assert record.currency == "ILS"
        assert record.confidence.currency == 0.0

    def test_fallback_last_resort_scans(self):
        text = "Corner Store\nmilk 7.90\nbread 12.40\nprinted 03/02/2024"
        record = asyncio.run(GenerationOrchestrator(backend=None).extract(text, extract_candidates(text)))

        assert record.total_amount == 12.40
        assert record.invoice_date == "2024-02-03"
        assert record.confidence.total_amount == 0.3

    def test_fallback_warning_constant(self):
        assert "fallback" in FALLBACK_WARNING
