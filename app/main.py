from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

import httpx
from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from agent.agent import AgentRuntime, build_agent
from agent.core.sessions import SessionRegistry, build_eviction_policy
from agent.errors import AgentRunError
from agent.orchestrator import RunOrchestrator
from app.forwarding import ForwardedProtoMiddleware
from app.paywall import (
    PAYMENT_RESPONSE_HEADER,
    AdmittedPayment,
    PaymentRequired,
    Paywall,
    payment_required_handler,
    require_payment,
)
from config.settings import Settings, get_settings


logging.basicConfig(
    level=get_settings().log_level,
    format="[%(asctime)s] %(levelname)s - %(message)s",
)
logger = logging.getLogger("schema_agent")

ENTRYPOINT_PATH = "/entrypoints/explore/invoke"
DESCRIPTION = (
    "Speak with an agent to explore x402 resources, inspect schemas, "
    "and get help shaping request payloads."
)

ENTRYPOINT_DESCRIPTOR: Dict[str, Any] = {
    "description": DESCRIPTION,
    "method": "POST",
    "body": {
        "type": "json",
        "fields": {
            "message": {
                "type": "string",
                "required": True,
                "description": "User request or question.",
            },
            "sessionId": {
                "type": "string",
                "required": False,
                "description": "Optional session identifier to resume context.",
            },
        },
    },
    "output": {
        "sessionId": "string",
        "response": "string",
        "totalRequests": "number",
    },
}


class ExploreRequest(BaseModel):
    message: str = Field(..., min_length=1, description="User question or request.")
    sessionId: Optional[str] = Field(
        default=None,
        min_length=1,
        description="Optional session identifier to resume a previous context.",
    )


class ExploreResponse(BaseModel):
    sessionId: str
    response: str
    totalRequests: int


def get_orchestrator(request: Request) -> RunOrchestrator:
    return request.app.state.orchestrator


def create_app(
    settings: Optional[Settings] = None,
    runtime: Optional[AgentRuntime] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        settings.validate()
        logger.info(
            "Config: model=%s key_set=%s payments=%s cors_origin=%s",
            settings.openrouter_model,
            bool(settings.openrouter_api_key),
            settings.payments_enabled,
            settings.cors_origin,
        )
        agent_runtime = runtime or build_agent(settings)
        agent_runtime.start()

        registry = SessionRegistry(
            build_eviction_policy(settings.max_sessions, settings.session_ttl_seconds)
        )
        async with httpx.AsyncClient(timeout=settings.tool_timeout) as owned_client:
            http_client = client or owned_client
            app.state.orchestrator = RunOrchestrator(
                registry,
                agent_runtime,
                client=http_client,
                tool_timeout=settings.tool_timeout,
            )
            app.state.paywall = (
                Paywall(settings, DESCRIPTION, client=http_client)
                if settings.payments_enabled
                else None
            )
            yield

    app = FastAPI(
        title="X402 Resource Schema Explorer",
        version="1.1.2",
        description=DESCRIPTION,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.cors_origin],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["content-type", "x-payment"],
        expose_headers=[PAYMENT_RESPONSE_HEADER],
    )
    # outermost, so CORS and the paywall see the client's scheme
    app.add_middleware(ForwardedProtoMiddleware)
    app.add_exception_handler(PaymentRequired, payment_required_handler)

    @app.get(ENTRYPOINT_PATH)
    def describe_entrypoint() -> Dict[str, Any]:
        return ENTRYPOINT_DESCRIPTOR

    @app.post(
        ENTRYPOINT_PATH,
        response_model=ExploreResponse,
    )
    async def explore(
        req: ExploreRequest,
        response: Response,
        payment: Optional[AdmittedPayment] = Depends(require_payment),
        orchestrator: RunOrchestrator = Depends(get_orchestrator),
    ) -> ExploreResponse:
        logger.info(
            "Incoming turn: session=%s message_len=%s",
            req.sessionId or "<new>",
            len(req.message),
        )
        try:
            result = await orchestrator.run_turn(req.sessionId, req.message)
        except AgentRunError as e:
            logger.exception("Turn processing failed: %s", e)
            raise HTTPException(status_code=500, detail=str(e))

        if payment is not None:
            response.headers[PAYMENT_RESPONSE_HEADER] = await payment.settle()

        return ExploreResponse(
            sessionId=result.session_id,
            response=result.response,
            totalRequests=result.total_requests,
        )

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
