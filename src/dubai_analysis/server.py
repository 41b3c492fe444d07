from __future__ import annotations

import os
import time
from collections.abc import Callable
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import Body, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .analysis import AnalysisService
from .config import AnalysisServiceConfig
from .errors import ConfigurationError, LLMError, RateLimitedError
from .forecast import INTERVAL_DAYS, SAMPLE_SERIES, generate_simple_forecast
from .http_security import error_body, install_middlewares
from .ingestion import SAMPLE_PROPERTIES, process_properties
from .key_store import CONFIGURED_COOKIE, ApiKeyStore
from .logging import configure_logging
from .metrics import maybe_start_metrics, server_errors_total, server_request_latency_seconds, server_requests_total
from .prompts import (
    PromptSpec,
    competitor_analysis_prompt,
    demographic_analysis_prompt,
    developer_info_prompt,
    generate_prompt,
    investment_analysis_prompt,
    market_trends_prompt,
    neighborhood_report_prompt,
    property_estimation_prompt,
    property_valuation_prompt,
    rental_analysis_prompt,
)
from .providers.base import ApiCredentials
from .schemas import (
    AnalyzeRequest,
    ApiRequest,
    ApiResponse,
    CompetitorAnalysisRequest,
    DataIngestionRequest,
    DemographicAnalysisRequest,
    DeveloperInfoRequest,
    ForecastRequest,
    GenerateRequest,
    InvestmentAnalysisRequest,
    MarketTrendsRequest,
    NeighborhoodReportRequest,
    PropertyEstimationRequest,
    PropertyLookupRequest,
    PropertyValuationRequest,
    RentalAnalysisRequest,
    SetApiKeyRequest,
    parse_request,
)

log = structlog.get_logger()

PROMPT_ENDPOINTS: tuple[tuple[str, type[ApiRequest], Callable[[Any], PromptSpec]], ...] = (
    ("generate", GenerateRequest, generate_prompt),
    ("rental-analysis", RentalAnalysisRequest, rental_analysis_prompt),
    ("market-trends", MarketTrendsRequest, market_trends_prompt),
    ("investment-analysis", InvestmentAnalysisRequest, investment_analysis_prompt),
    ("property-valuation", PropertyValuationRequest, property_valuation_prompt),
    ("property-estimation", PropertyEstimationRequest, property_estimation_prompt),
    ("neighborhood-report", NeighborhoodReportRequest, neighborhood_report_prompt),
    ("competitor-analysis", CompetitorAnalysisRequest, competitor_analysis_prompt),
    ("developer-info", DeveloperInfoRequest, developer_info_prompt),
    ("demographic-analysis", DemographicAnalysisRequest, demographic_analysis_prompt),
)


def _ok(data: Any = None, **extra: Any) -> JSONResponse:
    return JSONResponse(content=ApiResponse(success=True, data=data, **extra).body())


def build_key_store(cfg: AnalysisServiceConfig) -> ApiKeyStore:
    fallback = None
    if cfg.openai_api_key:
        fallback = ApiCredentials(api_key=cfg.openai_api_key, org_id=cfg.openai_org_id)
    return ApiKeyStore(
        cfg.key_store_path,
        cfg.fernet_key,
        fallback=fallback,
        rotation_days=cfg.key_rotation_days,
    )


def create_app(
    cfg: AnalysisServiceConfig | None = None,
    service: AnalysisService | None = None,
    key_store: ApiKeyStore | None = None,
) -> FastAPI:
    cfg = cfg or AnalysisServiceConfig()
    configure_logging(level=cfg.log_level, fmt=cfg.log_format, secrets=cfg.secrets())
    key_store = key_store or build_key_store(cfg)
    service = service or AnalysisService.from_config(cfg, key_store)

    def _request_id(request: Request) -> str | None:
        return getattr(request.state, "request_id", None)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        maybe_start_metrics(enable=cfg.enable_metrics, bind=cfg.metrics_bind, port=cfg.metrics_port)
        try:
            yield
        finally:
            await service.close()

    app = FastAPI(
        title="dubai-analysis",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if cfg.enable_api_docs else None,
        redoc_url="/redoc" if cfg.enable_api_docs else None,
        openapi_url="/openapi.json" if cfg.enable_api_docs else None,
    )
    app.state.service = service
    app.state.key_store = key_store

    @app.middleware("http")
    async def _observe(request: Request, call_next):
        started_at = time.monotonic()
        response = await call_next(request)
        route = request.scope.get("route")
        path = getattr(route, "path", "unmatched")
        server_requests_total.labels(path=path, status=str(response.status_code)).inc()
        server_request_latency_seconds.labels(path=path).observe(max(0.0, time.monotonic() - started_at))
        return response

    install_middlewares(app, cfg=cfg)

    @app.exception_handler(LLMError)
    async def _llm_error_handler(request: Request, exc: LLMError):
        server_errors_total.labels(type=exc.kind.value).inc()
        headers = {}
        if isinstance(exc, RateLimitedError) and exc.retry_after_seconds is not None:
            headers["Retry-After"] = str(exc.retry_after_seconds)
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.message, _request_id(request)),
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def _validation_error_handler(request: Request, exc: RequestValidationError):
        server_errors_total.labels(type="InvalidRequest").inc()
        errors = exc.errors()
        message = "Invalid request"
        if errors and errors[0].get("type") == "json_invalid":
            message = "Request body must be valid JSON"
        elif errors:
            message = str(errors[0].get("msg") or message)
        return JSONResponse(status_code=400, content=error_body(message, _request_id(request)))

    @app.exception_handler(ConfigurationError)
    async def _config_error_handler(request: Request, exc: ConfigurationError):
        server_errors_total.labels(type="configuration_error").inc()
        log.error("server_configuration_error", error=str(exc))
        return JSONResponse(
            status_code=500,
            content=error_body("Server configuration error.", _request_id(request)),
        )

    @app.exception_handler(Exception)
    async def _unhandled_error_handler(request: Request, exc: Exception):
        server_errors_total.labels(type="internal").inc()
        log.error("server_unhandled_error", error_type=type(exc).__name__, error=str(exc))
        return JSONResponse(
            status_code=500,
            content=error_body("Internal server error.", _request_id(request)),
        )

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    def _prompt_route(name: str, model_cls: type[ApiRequest], builder: Callable[[Any], PromptSpec]):
        async def handler(payload: Any = Body(None)) -> JSONResponse:
            req = parse_request(model_cls, payload)
            result = await service.run_prompt(builder(req), model=req.model, endpoint=name)
            return _ok(
                result.text,
                model=result.model,
                usage={"inputTokens": result.input_tokens, "outputTokens": result.output_tokens},
            )

        handler.__name__ = name.replace("-", "_")
        return handler

    for name, model_cls, builder in PROMPT_ENDPOINTS:
        app.add_api_route(f"/api/{name}", _prompt_route(name, model_cls, builder), methods=["POST"])

    @app.post("/api/property-lookup")
    async def property_lookup(payload: Any = Body(None)) -> JSONResponse:
        req = parse_request(PropertyLookupRequest, payload)
        out = await service.property_lookup(req)
        data = out.pop("data")
        return _ok(data, **out)

    @app.post("/api/analyze")
    async def analyze(payload: Any = Body(None)) -> JSONResponse:
        req = parse_request(AnalyzeRequest, payload)
        return _ok(await service.analyze(req))

    @app.post("/api/forecast")
    async def forecast(payload: Any = Body(None)) -> JSONResponse:
        req = parse_request(ForecastRequest, payload)
        result = generate_simple_forecast(req.prices, req.dates, req.periods, req.interval, req.confidence_level)
        result["metadata"].update(property_type=req.property_type, location=req.location)
        return _ok(result)

    @app.get("/api/forecast")
    async def forecast_samples() -> JSONResponse:
        return _ok({"samples": SAMPLE_SERIES, "intervals": list(INTERVAL_DAYS)})

    @app.post("/api/data-ingestion")
    async def data_ingestion(payload: Any = Body(None)) -> JSONResponse:
        req = parse_request(DataIngestionRequest, payload)
        return _ok(await service.ingest(req))

    @app.get("/api/data-ingestion")
    async def data_ingestion_sample() -> JSONResponse:
        processed = await process_properties(SAMPLE_PROPERTIES, {"removePII": True, "chunkSize": 100})
        return _ok({"original": SAMPLE_PROPERTIES, "processed": processed})

    def _key_status() -> dict[str, Any]:
        metadata = key_store.metadata()
        return {
            "configured": key_store.is_configured(),
            "needsRotation": key_store.needs_rotation(),
            "metadata": metadata.to_dict() if metadata else None,
        }

    @app.post("/api/set-api-key")
    async def set_api_key(payload: Any = Body(None)) -> JSONResponse:
        req = parse_request(SetApiKeyRequest, payload)
        metadata = key_store.set_key(req.api_key, req.org_id)
        response = _ok({"configured": True, "needsRotation": False, "metadata": metadata.to_dict()})
        response.set_cookie(
            CONFIGURED_COOKIE,
            "true",
            max_age=cfg.key_rotation_days * 86400,
            path="/",
            httponly=True,
            secure=cfg.secure_cookies,
            samesite="strict",
        )
        return response

    @app.get("/api/set-api-key")
    async def api_key_status() -> JSONResponse:
        return _ok(_key_status())

    @app.delete("/api/set-api-key")
    async def clear_api_key() -> JSONResponse:
        key_store.clear()
        response = _ok(_key_status())
        response.delete_cookie(CONFIGURED_COOKIE, path="/", httponly=True, secure=cfg.secure_cookies, samesite="strict")
        return response

    @app.get("/api/telemetry")
    async def telemetry() -> JSONResponse:
        records = [r.as_dict() for r in service.telemetry()]
        return _ok({"records": records, "count": len(records), "quota": service.quota()})

    return app


app = create_app()


def main() -> None:  # pragma: no cover
    import uvicorn

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("dubai_analysis.server:app", host=host, port=port)


if __name__ == "__main__":  # pragma: no cover
    main()
