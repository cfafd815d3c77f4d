from uuid import uuid4
import logging
import time
from typing import Any, Dict, Optional

from dotenv import load_dotenv

# .env must be loaded before any settings are read
load_dotenv()

from fastapi import Body, FastAPI, File, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError

from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from opentelemetry import trace

from .classifier import TopicClassifier
from .config import get_settings
from .errors import ChatValidationError, UpstreamError
from .gate import ConversationGate, GatePolicy, refusal_envelope
from .health import readiness, liveness
from .llm_client import UpstreamClient, build_upstream_client_from_env
from .logging import configure_logging, log_request
from .metrics import CHAT_REQUESTS_TOTAL, CHAT_ERRORS_TOTAL, GATE_LATENCY_SECONDS, INFLIGHT
from .pdf import extract_pdf_text
from .prompt import REFUSAL_MESSAGE
from .schemas import (
    ChatMessage,
    ChatRequestParams,
    HealthResponse,
    PdfAnalysisResponse,
    SessionChatRequest,
    StatelessChatRequest,
)
from .session import SessionStore, build_session_store_from_env
from .tracing import setup_tracing

logger = logging.getLogger("medgate")

tracer = trace.get_tracer("medgate-proxy")

SESSION_FIELDS = ("sessionId", "session_id", "message")


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request body"
    err = errors[0]
    loc = ".".join(str(p) for p in err.get("loc", ()))
    return f"{loc}: {err.get('msg')}" if loc else str(err.get("msg"))


def _assistant_reply(data: Dict[str, Any]) -> Optional[ChatMessage]:
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    message = choices[0].get("message")
    if not isinstance(message, dict) or not isinstance(message.get("content"), str):
        return None
    return ChatMessage(role="assistant", content=message["content"])


def create_app(
    upstream: Optional[UpstreamClient] = None,
    session_store: Optional[SessionStore] = None,
) -> FastAPI:
    settings = get_settings()

    app = FastAPI(title="MedGate Proxy")

    if settings.otel_enabled:
        setup_tracing(app=app, service_name=settings.otel_service_name)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    if upstream is None:
        upstream = build_upstream_client_from_env()
    if session_store is None:
        session_store = build_session_store_from_env()
    classifier = TopicClassifier(upstream, model=settings.classifier_model)

    app.state.upstream = upstream
    app.state.session_store = session_store
    app.state.gate = ConversationGate(classifier, GatePolicy.parse(settings.gate_policy))
    app.state.session_gate = ConversationGate(
        classifier, GatePolicy.parse(settings.session_gate_policy)
    )

    # -----------------------------------------------------------------
    # Error handlers
    # -----------------------------------------------------------------
    @app.exception_handler(UpstreamError)
    async def upstream_error_handler(request: Request, exc: UpstreamError):
        CHAT_ERRORS_TOTAL.labels(kind="upstream").inc()
        request.state.error_message = exc.message
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": "Upstream API Error", "details": exc.message},
        )

    @app.exception_handler(ChatValidationError)
    async def validation_error_handler(request: Request, exc: ChatValidationError):
        CHAT_ERRORS_TOTAL.labels(kind="validation").inc()
        request.state.error_message = exc.message
        return JSONResponse(status_code=400, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        CHAT_ERRORS_TOTAL.labels(kind="validation").inc()
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request body", "details": str(exc.errors())},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        CHAT_ERRORS_TOTAL.labels(kind="internal").inc()
        logger.exception("unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal Server Error", "details": str(exc)},
        )

    # -----------------------------------------------------------------
    # API logging (only /api)
    # -----------------------------------------------------------------
    @app.middleware("http")
    async def api_logging_middleware(request: Request, call_next):
        if not request.url.path.startswith("/api"):
            return await call_next(request)

        start = time.time()
        request.state.request_id = str(uuid4())
        status_code = 500
        try:
            with tracer.start_as_current_span(
                f"http {request.method} {request.url.path}"
            ) as span:
                ctx = span.get_span_context()
                request.state.trace_id = format(ctx.trace_id, "032x")
                request.state.span_id = format(ctx.span_id, "016x")
                response = await call_next(request)
                status_code = response.status_code
        except Exception as exc:
            request.state.error_message = str(exc)
            raise
        finally:
            await log_request(request, status_code, start)
        return response

    # -----------------------------------------------------------------
    # Health
    # -----------------------------------------------------------------
    @app.get("/api/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(
            status="OK",
            message="Server is running",
            environment=get_settings().environment,
        )

    @app.get("/ready")
    def ready():
        return readiness()

    @app.get("/live")
    async def live():
        return liveness()

    @app.get("/metrics")
    def metrics():
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # -----------------------------------------------------------------
    # Chat
    # -----------------------------------------------------------------
    def _complete(request: Request, params: ChatRequestParams, messages) -> Dict[str, Any]:
        s = get_settings()
        with tracer.start_as_current_span("upstream.chat_completion") as span:
            model = params.model or s.chat_model
            span.set_attribute("llm.model", model)
            t0 = time.time()
            try:
                return request.app.state.upstream.chat_completion(
                    model=model,
                    messages=messages,
                    max_tokens=params.max_tokens if params.max_tokens is not None else s.chat_max_tokens,
                    temperature=params.temperature if params.temperature is not None else s.chat_temperature,
                )
            finally:
                request.state.upstream_ms = round((time.time() - t0) * 1000.0, 2)

    def _evaluate(request: Request, gate: ConversationGate, conversation):
        with tracer.start_as_current_span("gate.evaluate") as span:
            t0 = time.time()
            decision = gate.evaluate(conversation)
            elapsed = time.time() - t0
            span.set_attribute("gate.policy", decision.policy.value)
            span.set_attribute("gate.allowed", decision.allowed)
        GATE_LATENCY_SECONDS.observe(elapsed)
        request.state.gate_ms = round(elapsed * 1000.0, 2)
        request.state.gate_policy = decision.policy.value
        request.state.gate_allowed = decision.allowed
        request.state.classifier_calls = decision.classifier_calls
        return decision

    def _stateless_chat(request: Request, body: Dict[str, Any]) -> Dict[str, Any]:
        try:
            req = StatelessChatRequest.model_validate(body)
        except ValidationError as exc:
            raise ChatValidationError(_first_error(exc)) from None

        decision = _evaluate(request, request.app.state.gate, req.messages)
        if not decision.allowed:
            return refusal_envelope()
        return _complete(request, req, req.messages)

    def _session_chat(request: Request, body: Dict[str, Any]) -> Dict[str, Any]:
        try:
            req = SessionChatRequest.model_validate(body)
        except ValidationError as exc:
            raise ChatValidationError(_first_error(exc)) from None

        if not req.session_id or req.message is None:
            raise ChatValidationError("sessionId and message are required")
        if req.message.role != "user":
            raise ChatValidationError("message.role must be 'user'")

        store: SessionStore = request.app.state.session_store
        session_id = req.session_id
        request.state.session_id = session_id

        with store.lock(session_id):
            store.append(session_id, req.message)
            history = store.get(session_id)

            decision = _evaluate(request, request.app.state.session_gate, history)
            if not decision.allowed:
                store.append(
                    session_id, ChatMessage(role="assistant", content=REFUSAL_MESSAGE)
                )
                return refusal_envelope()

            data = _complete(request, req, history)
            reply = _assistant_reply(data)
            if reply is not None:
                store.append(session_id, reply)
            return data

    @app.post("/api/chat")
    def chat(request: Request, body: Optional[Dict[str, Any]] = Body(default=None)):
        body = body or {}
        stateful = any(k in body for k in SESSION_FIELDS) or "messages" not in body
        CHAT_REQUESTS_TOTAL.labels(mode="session" if stateful else "stateless").inc()
        INFLIGHT.inc()
        try:
            with tracer.start_as_current_span("medgate.chat") as span:
                span.set_attribute("chat.stateful", stateful)
                if stateful:
                    return _session_chat(request, body)
                return _stateless_chat(request, body)
        finally:
            INFLIGHT.dec()

    @app.delete("/api/session/{session_id}")
    def delete_session(session_id: str, request: Request):
        request.app.state.session_store.clear(session_id)
        return {"success": True}

    # -----------------------------------------------------------------
    # PDF
    # -----------------------------------------------------------------
    @app.post("/api/analyze-pdf", response_model=PdfAnalysisResponse)
    def analyze_pdf(pdf: Optional[UploadFile] = File(default=None)):
        if pdf is None:
            return JSONResponse(status_code=400, content={"error": "No PDF file uploaded"})

        with tracer.start_as_current_span("pdf.extract") as span:
            result = extract_pdf_text(pdf.file.read())
            span.set_attribute("pdf.pages", result.pages)

        return PdfAnalysisResponse(
            success=True,
            text=result.text,
            pages=result.pages,
            info=result.info,
        )

    return app


configure_logging(get_settings().log_level)

app = create_app()


def run() -> None:
    import uvicorn

    settings = get_settings()
    logger.info("Server running on port %d", settings.port)
    logger.info("CORS allowed from: %s", ", ".join(settings.cors_origins))
    logger.info("Health check: http://localhost:%d/api/health", settings.port)
    uvicorn.run(app, host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    run()
