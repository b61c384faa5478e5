import pytest
from fastapi.testclient import TestClient

from conftest import FakeFacilitator, agent_id_by_name
from x402_market.agents.completion import CompletionError
from x402_market.config import MarketplaceConfig
from x402_market.main import create_app
from x402_market.payment.codec import X_PAYMENT_REQUIRED, X_REQUEST_ID, decode_requirement
from x402_market.payment.config import PaymentConfig


@pytest.fixture
def free_client(marketplace_config, repository, completion_provider, transaction_log):
    """App without a payee: the payment gate is disabled."""
    app = create_app(
        payment_config=PaymentConfig(_env_file=None, payment_address=""),
        marketplace_config=marketplace_config,
        repository=repository,
        completion_provider=completion_provider,
        transaction_log=transaction_log,
    )
    return TestClient(app)


@pytest.fixture
def paid_client(make_app):
    return TestClient(make_app(facilitator=FakeFacilitator()))


def test_list_agents_is_camel_case(free_client):
    response = free_client.get("/api/agents")

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 3
    agent = body["agents"][0]
    assert {"systemPrompt", "totalInvocations", "createdAt", "pricing"} <= set(agent)
    assert agent["status"] == "active"


def test_networks_and_models(free_client):
    networks = free_client.get("/api/agents/networks").json()
    assert networks["count"] == 3
    base = next(n for n in networks["networks"] if n["id"] == "base")
    assert base["chainId"] == 8453 and base["chainIdHex"] == "0x2105"

    models = free_client.get("/api/agents/models").json()
    assert models == {"models": ["test/model-a", "test/model-b"], "count": 2,
                      "timestamp": models["timestamp"]}


def test_unknown_agent_is_404_envelope(free_client):
    response = free_client.get("/api/agents/missing", headers={X_REQUEST_ID: "req_404"})

    assert response.status_code == 404
    body = response.json()
    assert body["error"] == "Not Found"
    assert body["message"] == "Agent missing not found"
    assert body["requestId"] == "req_404"
    assert response.headers[X_REQUEST_ID] == "req_404"


def test_invoke_runs_completion_and_counts_invocations(free_client, repository, completion_provider):
    agent_id = agent_id_by_name(repository, "Code Assistant")
    before = repository.get(agent_id).total_invocations

    response = free_client.post(
        f"/api/agents/{agent_id}/invoke",
        json={"input": "Write hello world", "parameters": {"max_tokens": 50}},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["agent"] == {"id": agent_id, "name": "Code Assistant"}
    assert body["result"]["agentId"] == agent_id
    assert body["result"]["usage"]["total_tokens"] == 15
    assert repository.get(agent_id).total_invocations == before + 1
    messages = completion_provider.calls[0]["messages"]
    assert messages[0]["role"] == "system"
    assert messages[1] == {"role": "user", "content": "Write hello world"}


def test_invoke_model_parameter_overrides_agent_model(free_client, repository, completion_provider):
    agent_id = agent_id_by_name(repository, "Code Assistant")

    free_client.post(f"/api/agents/{agent_id}/invoke", json={"input": "x", "parameters": {"model": "m2"}})

    assert completion_provider.calls[0]["model"] == "m2"


@pytest.mark.parametrize(
    "body",
    [{}, {"input": ""}, {"input": "x", "parameters": {"temperature": 5}}],
)
def test_invalid_invoke_body_is_400(free_client, repository, body):
    agent_id = agent_id_by_name(repository, "Code Assistant")

    response = free_client.post(f"/api/agents/{agent_id}/invoke", json=body)

    assert response.status_code == 400
    assert response.json()["error"] == "Validation Error"


def test_invoke_unknown_agent_is_404(free_client):
    response = free_client.post("/api/agents/missing/invoke", json={"input": "hi"})
    assert response.status_code == 404


def test_completion_failure_is_502(free_client, repository, completion_provider):
    async def fail(**kwargs):
        raise CompletionError("The AI service is currently unavailable")

    completion_provider.complete = fail
    agent_id = agent_id_by_name(repository, "Code Assistant")

    response = free_client.post(f"/api/agents/{agent_id}/invoke", json={"input": "hi"})

    assert response.status_code == 502
    assert response.json()["message"] == "The AI service is currently unavailable"


def test_deploy_returns_201_and_stores_agent(free_client, repository):
    response = free_client.post(
        "/api/agents/deploy",
        json={
            "name": "Summarizer",
            "description": "Summarizes documents",
            "model": "test/model-a",
            "systemPrompt": "Summarize.",
        },
    )

    assert response.status_code == 201
    body = response.json()
    assert body["message"] == "Agent deployed successfully"
    assert repository.get(body["agent"]["id"]).system_prompt == "Summarize."


@pytest.mark.parametrize(
    "pricing",
    [{"price": "0.10"}, {"price": "$0.123"}, {"price": "$1", "network": "solana"}],
)
def test_deploy_rejects_invalid_pricing(free_client, pricing):
    response = free_client.post(
        "/api/agents/deploy",
        json={
            "name": "A",
            "description": "B",
            "model": "m",
            "systemPrompt": "C",
            "pricing": pricing,
        },
    )
    assert response.status_code == 400


def test_chat_completions_is_openai_shaped(free_client):
    response = free_client.post(
        "/v1/chat/completions",
        json={"messages": [{"role": "user", "content": "Hi"}]},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["object"] == "chat.completion"
    assert body["model"] == MarketplaceConfig(_env_file=None).default_model
    assert body["choices"][0]["message"] == {"role": "assistant", "content": "Hello from the agent"}
    assert body["usage"]["total_tokens"] == 15


def test_priced_routes_challenge_with_agent_price(paid_client, repository):
    writer = agent_id_by_name(repository, "Content Writer")

    custom = paid_client.post(f"/api/agents/{writer}/invoke", json={"input": "hi"})
    default = paid_client.post("/api/agents/someone/invoke", json={"input": "hi"})
    tier = paid_client.post("/api/agents/premium/invoke", json={"input": "hi"})
    chat = paid_client.post("/v1/chat/completions", json={"messages": []})

    assert decode_requirement(custom.headers[X_PAYMENT_REQUIRED]).amount == "0.15"
    assert decode_requirement(default.headers[X_PAYMENT_REQUIRED]).amount == "0.10"
    assert decode_requirement(tier.headers[X_PAYMENT_REQUIRED]).amount == "0.25"
    chat_requirement = decode_requirement(chat.headers[X_PAYMENT_REQUIRED])
    assert (chat_requirement.amount, chat_requirement.network) == ("0.001", "base-sepolia")


def test_free_routes_stay_free_with_gate_enabled(paid_client):
    assert paid_client.get("/api/agents").status_code == 200
    assert paid_client.get("/api/agents/networks").status_code == 200
    assert paid_client.get("/").status_code == 200
    assert paid_client.get("/health").status_code == 200


def test_cors_exposes_payment_headers(paid_client):
    response = paid_client.options(
        "/api/agents/x/invoke",
        headers={
            "Origin": "http://localhost:3000",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "X-PAYMENT",
        },
    )
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "http://localhost:3000"

    paid = paid_client.post(
        "/api/agents/x/invoke", json={"input": "hi"}, headers={"Origin": "http://localhost:3000"}
    )
    assert X_PAYMENT_REQUIRED in paid.headers["access-control-expose-headers"]


# Health and readiness


def test_health(free_client):
    body = free_client.get("/health").json()
    assert body["status"] == "healthy"


def test_ready_requires_payment_configuration(free_client, paid_client):
    not_ready = free_client.get("/ready")
    assert not_ready.status_code == 503
    assert not_ready.json()["checks"] == {"payment": False, "completion": True}

    assert paid_client.get("/ready").status_code == 200


# Transaction log endpoint


def test_transaction_log_requires_request_id(free_client):
    response = free_client.post("/api/agents/transaction-log", json={"transactionHash": "0x1"})
    assert response.status_code == 400
    assert "X-Request-ID" in response.json()["message"]


def test_transaction_log_records_entry(free_client, transaction_log):
    response = free_client.post(
        "/api/agents/transaction-log",
        json={
            "transactionHash": "0xabc",
            "network": "base",
            "payer": "0x2222222222222222222222222222222222222222",
            "agentId": "agent_1",
            "amount": "0.05",
            "model": "m",
        },
        headers={X_REQUEST_ID: "req_log"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "success"
    assert body["requestId"] == "req_log"
    entry = transaction_log.recent()[0]
    assert (entry.transaction_hash, entry.agent_id, entry.request_id) == ("0xabc", "agent_1", "req_log")
    assert entry.metadata == {"model": "m"}


def test_transaction_log_accepts_header_fields(free_client, transaction_log):
    response = free_client.post(
        "/api/agents/transaction-log",
        json={},
        headers={
            X_REQUEST_ID: "req_h",
            "X-Transaction-Hash": "0xdef",
            "X-Payment-Network": "base-sepolia",
            "X-Payer-Address": "0x3333333333333333333333333333333333333333",
        },
    )

    assert response.status_code == 200
    assert transaction_log.recent()[0].network == "base-sepolia"


def test_transaction_log_rejects_incomplete_entry(free_client, transaction_log):
    response = free_client.post(
        "/api/agents/transaction-log",
        json={"network": "base"},
        headers={X_REQUEST_ID: "req_bad"},
    )

    assert response.status_code == 400
    assert response.json()["error"] == "Validation Error"
    assert transaction_log.recent() == []
