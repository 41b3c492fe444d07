from __future__ import annotations

import json
import re
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

import structlog

from .cancellation import CancellationToken
from .client import ClientOptions, ClientState, LLMClient
from .config import AnalysisServiceConfig
from .contracts import CompletionRequest, CompletionResult, FunctionCall
from .errors import InvalidRequestError, LLMError, UnknownError
from .fallback import generate_fallback_property_data
from .forecast import generate_simple_forecast
from .ingestion import process_properties
from .key_store import ApiKeyStore
from .prompts import (
    ANALYZE_FUNCTIONS,
    PromptSpec,
    analyze_prompt,
    market_context,
    property_lookup_prompt,
    translation_prompt,
)
from .providers.base import static_key
from .providers.gemini_official import GeminiAdapter
from .providers.openai_chat import OpenAIChatAdapter
from .schemas import AnalyzeRequest, DataIngestionRequest, PropertyLookupRequest
from .telemetry import TelemetryRecord

log = structlog.get_logger()

OPENAI = "openai"
GEMINI = "gemini"

LOOKUP_SOURCES = (
    "Dubai Land Department (dubailand.gov.ae)",
    "Real Estate Transaction Records",
    "Property Valuation Database",
)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$")


def provider_for_model(model: str) -> str:
    return GEMINI if model.strip().lower().startswith("gemini") else OPENAI


def parse_json_answer(text: str) -> dict[str, Any]:
    cleaned = _FENCE_RE.sub("", text.strip())
    try:
        data = json.loads(cleaned)
    except ValueError as e:
        raise UnknownError("Provider returned malformed JSON.") from e
    if not isinstance(data, dict):
        raise UnknownError("Provider returned malformed JSON.")
    return data


def markdown_table(rows: list[Mapping[str, Any]], headers: list[str] | None = None) -> str:
    cols = list(headers) if headers else (list(rows[0].keys()) if rows else [])
    lines = []
    if cols:
        lines.append("| " + " | ".join(str(c) for c in cols) + " |")
        lines.append("| " + " | ".join("---" for _ in cols) + " |")
    for row in rows:
        values = [row.get(c, "") for c in cols] if headers else list(row.values())
        lines.append("| " + " | ".join(str(v) for v in values) + " |")
    return "\n".join(lines) + ("\n" if lines else "")


def run_function_call(call: FunctionCall) -> dict[str, Any]:
    """Execute a function the model asked for; failures are reported in-band."""
    try:
        args = json.loads(call.arguments) if call.arguments else {}
    except ValueError:
        return {"function": call.name, "error": "Invalid function arguments"}
    if not isinstance(args, dict):
        return {"function": call.name, "error": "Invalid function arguments"}

    if call.name == "format_table":
        rows = args.get("data")
        if not isinstance(rows, list) or not all(isinstance(r, dict) for r in rows):
            return {"function": call.name, "error": "Invalid data for table formatting"}
        headers = args.get("headers") if isinstance(args.get("headers"), list) else None
        return {"function": call.name, "result": {"markdown_table": markdown_table(rows, headers)}}

    if call.name == "forecast_time_series":
        try:
            result = generate_simple_forecast(
                [float(p) for p in args.get("prices") or []],
                [str(d) for d in args.get("dates") or []],
                int(args.get("periods") or 0),
                str(args.get("interval") or ""),
                float(args.get("confidence_level") or 0.95),
            )
        except (InvalidRequestError, OverflowError, TypeError, ValueError) as e:
            return {"function": call.name, "error": getattr(e, "message", str(e))}
        return {"function": call.name, "result": result}

    if call.name == "generate_chart":
        return {"function": call.name, "error": "Chart rendering is not available on this server"}

    return {"function": call.name, "error": f"Unknown function: {call.name}"}


def _usage(result: CompletionResult) -> dict[str, int]:
    return {
        "inputTokens": result.input_tokens,
        "outputTokens": result.output_tokens,
        "totalTokens": result.input_tokens + result.output_tokens,
    }


class AnalysisService:
    """
    Domain operations behind the HTTP surface.

    Routes each request to the client for its model (``gemini-*`` models go
    to Gemini, everything else to OpenAI). All clients share one
    `ClientState`, so the admission quota and telemetry buffer are global to
    the service.
    """

    def __init__(
        self,
        clients: Mapping[str, LLMClient],
        *,
        default_model: str = "gpt-4o-mini",
        state: ClientState | None = None,
    ):
        if not clients:
            raise ValueError("At least one LLM client is required.")
        self.clients = dict(clients)
        self.default_model = default_model
        self.state = state or next(iter(self.clients.values())).state

    @classmethod
    def from_config(cls, cfg: AnalysisServiceConfig, key_store: ApiKeyStore) -> "AnalysisService":
        options = ClientOptions(
            max_retries=cfg.llm_max_retries,
            backoff_initial_seconds=cfg.llm_backoff_initial_seconds,
            backoff_max_seconds=cfg.llm_backoff_max_seconds,
            timeout_seconds=cfg.llm_timeout_seconds,
            telemetry_enabled=cfg.telemetry_enabled,
        )
        state = ClientState.create(
            max_requests_per_minute=cfg.max_requests_per_minute,
            max_requests_per_day=cfg.max_requests_per_day,
            timezone=cfg.rate_limit_timezone,
            telemetry_capacity=cfg.telemetry_capacity,
            production=cfg.production,
        )
        openai = OpenAIChatAdapter(
            key_store.credentials,
            base_url=cfg.openai_base_url,
            timeout_seconds=cfg.llm_http_timeout_seconds,
        )
        gemini = GeminiAdapter(
            static_key(cfg.gemini_api_key),
            base_url=cfg.gemini_base_url,
            timeout_seconds=cfg.llm_http_timeout_seconds,
        )
        return cls(
            {
                OPENAI: LLMClient(openai, options=options, state=state),
                GEMINI: LLMClient(gemini, options=options, state=state),
            },
            default_model=cfg.default_model,
            state=state,
        )

    async def close(self) -> None:
        for client in self.clients.values():
            await client.close()

    def telemetry(self) -> list[TelemetryRecord]:
        return self.state.telemetry.records()

    def quota(self) -> dict[str, Any] | None:
        return self.state.gate.snapshot() if self.state.gate is not None else None

    def client_for(self, model: str) -> LLMClient:
        provider = provider_for_model(model)
        client = self.clients.get(provider)
        if client is None:
            raise InvalidRequestError(f"No provider configured for model {model!r}")
        return client

    async def run_prompt(
        self,
        spec: PromptSpec,
        *,
        model: str | None = None,
        endpoint: str = "chat.completions",
        functions: tuple[dict[str, Any], ...] | None = None,
        cancel: CancellationToken | None = None,
    ) -> CompletionResult:
        model = model or self.default_model
        request = CompletionRequest.from_prompt(
            model,
            spec.prompt,
            system=spec.system,
            functions=functions,
            temperature=spec.temperature,
            max_tokens=spec.max_tokens,
            endpoint=endpoint,
        )
        return await self.client_for(model).complete(request, cancel)

    async def property_lookup(
        self,
        req: PropertyLookupRequest,
        *,
        cancel: CancellationToken | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        name = req.search_term or "Property"
        area = req.location or "Dubai Marina"
        try:
            result = await self.run_prompt(
                property_lookup_prompt(req), model=req.model, endpoint="property-lookup", cancel=cancel
            )
            data = parse_json_answer(result.text)
        except InvalidRequestError:
            raise
        except LLMError as e:
            log.warning("property_lookup_fallback", kind=e.kind.value, error=e.message, area=area)
            return {
                "data": generate_fallback_property_data(name, area, now=now),
                "sources": ["Fallback Data"],
                "confidence": 0.5,
                "fallback": True,
                "lastUpdated": (now or datetime.now(timezone.utc)).isoformat(),
            }
        return {
            "data": data,
            "sources": list(LOOKUP_SOURCES),
            "confidence": 0.9,
            "fallback": False,
            "lastUpdated": (now or datetime.now(timezone.utc)).isoformat(),
        }

    async def analyze(self, req: AnalyzeRequest, *, cancel: CancellationToken | None = None) -> dict[str, Any]:
        context = market_context(req.location, req.property_type)
        result = await self.run_prompt(
            analyze_prompt(req, context),
            model=req.model,
            endpoint="analyze",
            functions=ANALYZE_FUNCTIONS if req.use_functions else None,
            cancel=cancel,
        )
        function_result = run_function_call(result.function_call) if result.function_call else None
        return {
            "analysis": result.text,
            "functionCall": function_result,
            "usage": _usage(result),
            "model": result.model,
            "retrievedChunks": len(context),
        }

    async def translate(self, text: str, source: str, target: str, *, model: str | None = None) -> str:
        result = await self.run_prompt(translation_prompt(text, source, target), model=model, endpoint="translate")
        return result.text.strip() or text

    async def ingest(self, req: DataIngestionRequest) -> dict[str, Any]:
        opts = req.options
        wants_translation = opts.translate_to_english or opts.translate_to_arabic

        async def _translator(text: str, source: str, target: str) -> str:
            return await self.translate(text, source, target, model=req.model)

        processed = await process_properties(
            list(req.properties or []),
            opts.model_dump(by_alias=True),
            translator=_translator if wants_translation else None,
        )
        log.info("ingestion_processed", source=req.source, count=len(processed))
        return {
            "source": req.source,
            "processedCount": len(processed),
            "properties": processed,
            "processedAt": datetime.now(timezone.utc).isoformat(),
        }
