"""
Agent marketplace API routes.

Priced routes (invoke, deploy, chat completions) are paywalled by the payment
gate before they reach these handlers; handlers only see admitted requests.
"""

import logging
import time
import uuid
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from x402_market.agents.completion import CompletionError
from x402_market.agents.models import (
    AgentDeployRequest,
    AgentDeployResponse,
    AgentDetailResponse,
    AgentInvokeRequest,
    AgentInvokeResponse,
    AgentListResponse,
    AgentSummary,
    ChatCompletionRequest,
    TransactionLogResponse,
    dump_camel,
)
from x402_market.agents.service import AgentInactive, AgentNotFound, AgentService
from x402_market.errors import create_error_response, get_request_id, utc_timestamp
from x402_market.payment.codec import X_PAYER_ADDRESS, X_REQUEST_ID
from x402_market.payment.networks import SUPPORTED_NETWORKS
from x402_market.payment.transaction_log import TransactionLog, TransactionLogEntry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/agents", tags=["agents"])
chat_router = APIRouter(prefix="/v1", tags=["chat"])

# Legacy headers some clients use to report a confirmation
X_TRANSACTION_HASH = "X-Transaction-Hash"
X_PAYMENT_NETWORK = "X-Payment-Network"


def get_agent_service(request: Request) -> AgentService:
    return request.app.state.agent_service


def get_transaction_log(request: Request) -> TransactionLog:
    return request.app.state.transaction_log


@router.get("")
async def list_agents(request: Request) -> JSONResponse:
    """Get all available agents."""
    agents = get_agent_service(request).list_agents()
    logger.info("Agents list retrieved: %d", len(agents))
    response = AgentListResponse(agents=agents, total=len(agents), timestamp=utc_timestamp())
    return JSONResponse(content=dump_camel(response))


@router.get("/networks")
async def list_networks() -> Dict[str, Any]:
    """Get supported settlement networks."""
    networks = [network.as_dict() for network in SUPPORTED_NETWORKS.values()]
    return {"networks": networks, "count": len(networks), "timestamp": utc_timestamp()}


@router.get("/models")
async def list_models(request: Request) -> Dict[str, Any]:
    """Get the models the completion provider serves."""
    models = await get_agent_service(request).available_models(get_request_id(request))
    logger.info("Available models retrieved: %d", len(models))
    return {"models": models, "count": len(models), "timestamp": utc_timestamp()}


@router.post("/transaction-log")
async def log_transaction(
    request: Request,
    payload: Optional[Dict[str, Any]] = Body(default=None),
) -> JSONResponse:
    """Record a payment confirmation reported by a client.

    ``X-Request-ID`` is required for correlation. ``transactionHash``,
    ``network`` and ``payer`` may also arrive as headers.
    """
    request_id = request.headers.get(X_REQUEST_ID)
    if not request_id:
        return create_error_response(
            400,
            "X-Request-ID header is required for request correlation",
            request_id=get_request_id(request),
        )

    data = dict(payload or {})
    data["requestId"] = request_id
    for header, key in (
        (X_TRANSACTION_HASH, "transactionHash"),
        (X_PAYMENT_NETWORK, "network"),
        (X_PAYER_ADDRESS, "payer"),
    ):
        if not data.get(key) and request.headers.get(header):
            data[key] = request.headers[header]

    try:
        entry = TransactionLogEntry.model_validate(data)
    except ValidationError as e:
        logger.warning("Rejected transaction log entry: %s", e.error_count())
        return create_error_response(
            400,
            "Invalid transaction log entry",
            request_id=request_id,
            error="Validation Error",
        )

    get_transaction_log(request).record(entry)
    response = TransactionLogResponse(
        status="success",
        message="Transaction confirmation logged",
        request_id=request_id,
        timestamp=utc_timestamp(),
    )
    return JSONResponse(content=dump_camel(response))


@router.post("/deploy")
async def deploy_agent(body: AgentDeployRequest, request: Request) -> JSONResponse:
    """Deploy a new agent (requires x402 payment)."""
    payment = getattr(request.state, "payment", None) or {}
    agent = get_agent_service(request).deploy_agent(body, owner=payment.get("payer", "anonymous"))
    response = AgentDeployResponse(
        success=True,
        agent=agent,
        message="Agent deployed successfully",
        timestamp=utc_timestamp(),
    )
    return JSONResponse(status_code=201, content=dump_camel(response))


@router.get("/{agent_id}")
async def get_agent(agent_id: str, request: Request) -> JSONResponse:
    """Get specific agent details."""
    try:
        agent = get_agent_service(request).get_agent(agent_id)
    except AgentNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    response = AgentDetailResponse(agent=agent, timestamp=utc_timestamp())
    return JSONResponse(content=dump_camel(response))


@router.post("/{agent_id}/invoke")
async def invoke_agent(agent_id: str, body: AgentInvokeRequest, request: Request) -> JSONResponse:
    """Invoke an agent (requires x402 payment)."""
    service = get_agent_service(request)
    try:
        agent = service.get_agent(agent_id)
        result = await service.invoke_agent(agent_id, body, request_id=get_request_id(request))
    except AgentNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except AgentInactive as e:
        raise HTTPException(status_code=409, detail=str(e))
    except CompletionError as e:
        raise HTTPException(status_code=502, detail=str(e))

    response = AgentInvokeResponse(
        success=True,
        result=result,
        agent=AgentSummary(id=agent.id, name=agent.name),
        timestamp=utc_timestamp(),
    )
    return JSONResponse(content=dump_camel(response))


@chat_router.post("/chat/completions")
async def chat_completions(body: ChatCompletionRequest, request: Request) -> Dict[str, Any]:
    """OpenAI-compatible chat completion (requires x402 payment)."""
    try:
        completion = await get_agent_service(request).chat_completion(
            messages=[message.model_dump() for message in body.messages],
            model=body.model,
            max_tokens=body.max_tokens,
            temperature=body.temperature,
            request_id=get_request_id(request),
        )
    except CompletionError as e:
        raise HTTPException(status_code=502, detail=str(e))

    return {
        "id": f"chatcmpl-{uuid.uuid4().hex[:24]}",
        "object": "chat.completion",
        "created": int(time.time()),
        "model": completion.model,
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": completion.text},
                "finish_reason": "stop",
            }
        ],
        "usage": completion.usage.model_dump(),
    }
