import asyncio

import httpx
import pytest
from fastapi import FastAPI, HTTPException, Request
from fastapi.testclient import TestClient

from conftest import PAY_TO, FakeFacilitator
from x402_market.errors import register_exception_handlers
from x402_market.middleware import RequestContextMiddleware
from x402_market.payment.codec import (
    X_PAYER_ADDRESS,
    X_PAYMENT,
    X_PAYMENT_REQUIRED,
    X_PAYMENT_RESPONSE,
    X_REQUEST_ID,
    decode_receipt,
    decode_requirement,
    encode_proof,
)
from x402_market.payment.errors import FacilitatorUnavailable, PaymentVerificationFailed
from x402_market.payment.facilitator import LocalFacilitator
from x402_market.payment.middleware import X402PaymentGate
from x402_market.payment.pricing import PricingResolver, RouteConfig
from x402_market.payment.signing import build_payment_proof


class Handler:
    """Records calls to the priced endpoint."""

    def __init__(self):
        self.calls = 0
        self.payments = []
        self.fail_with = None
        self.status = 200


def build_gate_app(facilitator, handler, facilitator_timeout=1.0):
    app = FastAPI()
    register_exception_handlers(app)
    resolver = PricingResolver(
        [RouteConfig("POST", "/agents/{id}/invoke", "$0.05", "base")],
        pay_to=PAY_TO,
    )
    app.add_middleware(
        X402PaymentGate,
        resolver=resolver,
        facilitator=facilitator,
        facilitator_timeout=facilitator_timeout,
    )
    app.add_middleware(RequestContextMiddleware)

    @app.post("/agents/{agent_id}/invoke")
    async def invoke(agent_id: str, request: Request):
        handler.calls += 1
        handler.payments.append(getattr(request.state, "payment", None))
        if handler.fail_with is not None:
            raise handler.fail_with
        if handler.status >= 400:
            raise HTTPException(status_code=handler.status, detail="handler refused")
        return {"agent": agent_id, "answer": 42}

    @app.get("/agents")
    async def list_agents():
        return {"agents": []}

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    return app


@pytest.fixture
def handler():
    return Handler()


def challenge(client, path="/agents/x/invoke"):
    response = client.post(path, json={"input": "hi"})
    assert response.status_code == 402
    return decode_requirement(response.headers[X_PAYMENT_REQUIRED])


def test_no_payment_returns_402_and_handler_is_not_called(handler):
    facilitator = FakeFacilitator()
    client = TestClient(build_gate_app(facilitator, handler))

    response = client.post("/agents/x/invoke", json={"input": "hi"}, headers={X_REQUEST_ID: "req_1"})

    assert response.status_code == 402
    body = response.json()
    assert body["error"] == "Payment Required"
    assert body["requestId"] == "req_1"
    assert "timestamp" in body
    requirement = decode_requirement(response.headers[X_PAYMENT_REQUIRED])
    assert (requirement.amount, requirement.network) == ("0.05", "base")
    assert requirement.resource == "POST /agents/x/invoke"
    assert requirement.pay_to == PAY_TO
    assert handler.calls == 0
    assert facilitator.verify_calls == []


def test_happy_path_pays_and_returns_receipt(handler, payer):
    client = TestClient(build_gate_app(LocalFacilitator(), handler))
    requirement = challenge(client)
    proof = build_payment_proof(requirement, payer)

    response = client.post(
        "/agents/x/invoke",
        json={"input": "hi"},
        headers={X_PAYMENT: encode_proof(proof), X_PAYER_ADDRESS: payer.address},
    )

    assert response.status_code == 200
    assert response.json() == {"agent": "x", "answer": 42}
    receipt = decode_receipt(response.headers[X_PAYMENT_RESPONSE])
    assert receipt.success
    assert (receipt.amount, receipt.network, receipt.payer) == ("0.05", "base", payer.address)
    assert handler.calls == 1
    assert handler.payments[0]["payer"] == payer.address


def test_proof_for_another_resource_is_rejected_with_fresh_challenge(handler, payer):
    client = TestClient(build_gate_app(LocalFacilitator(), handler))
    requirement = challenge(client, "/agents/x/invoke")
    proof = build_payment_proof(requirement, payer)

    response = client.post("/agents/y/invoke", json={}, headers={X_PAYMENT: encode_proof(proof)})

    assert response.status_code == 402
    assert response.json()["message"] == "Payment verification failed."
    # The internal reason is never returned
    assert "mismatch" not in response.text
    fresh = decode_requirement(response.headers[X_PAYMENT_REQUIRED])
    assert fresh.resource == "POST /agents/y/invoke"
    assert X_PAYMENT_RESPONSE not in response.headers
    assert handler.calls == 0


def test_malformed_payment_header_gets_fresh_challenge(handler):
    facilitator = FakeFacilitator()
    client = TestClient(build_gate_app(facilitator, handler))

    response = client.post("/agents/x/invoke", json={}, headers={X_PAYMENT: "%%%not-base64"})

    assert response.status_code == 402
    assert X_PAYMENT_REQUIRED in response.headers
    assert facilitator.verify_calls == []
    assert handler.calls == 0


@pytest.mark.parametrize(
    "window",
    [{"valid_after": -1}, {"valid_before": 2**256}, {"valid_after": 2**256 + 5, "valid_before": 2**256 + 10}],
)
def test_out_of_range_authorization_window_gets_fresh_challenge(handler, payer, window):
    client = TestClient(build_gate_app(LocalFacilitator(), handler))
    proof = build_payment_proof(challenge(client), payer).model_copy(update=window)

    response = client.post("/agents/x/invoke", json={}, headers={X_PAYMENT: encode_proof(proof)})

    assert response.status_code == 402
    assert X_PAYMENT_REQUIRED in response.headers
    assert handler.calls == 0


def test_replayed_proof_is_rejected(handler, payer):
    client = TestClient(build_gate_app(LocalFacilitator(), handler))
    proof = build_payment_proof(challenge(client), payer)
    headers = {X_PAYMENT: encode_proof(proof)}

    assert client.post("/agents/x/invoke", json={}, headers=headers).status_code == 200
    assert client.post("/agents/x/invoke", json={}, headers=headers).status_code == 402
    assert handler.calls == 1


def test_unpriced_route_has_no_payment_headers(handler):
    facilitator = FakeFacilitator()
    client = TestClient(build_gate_app(facilitator, handler))

    response = client.get("/agents")

    assert response.status_code == 200
    assert X_PAYMENT_REQUIRED not in response.headers
    assert X_PAYMENT_RESPONSE not in response.headers
    assert facilitator.verify_calls == []


def test_skip_paths_and_options_bypass_the_gate(handler):
    facilitator = FakeFacilitator()
    client = TestClient(build_gate_app(facilitator, handler))

    assert client.get("/health").status_code == 200
    response = client.options("/agents/x/invoke")
    assert response.status_code != 402


@pytest.mark.parametrize("valid", [True, False])
def test_handler_runs_iff_verification_succeeds(handler, payer, valid):
    facilitator = FakeFacilitator(valid=valid)
    client = TestClient(build_gate_app(facilitator, handler))
    proof = build_payment_proof(challenge(client), payer)

    response = client.post("/agents/x/invoke", json={}, headers={X_PAYMENT: encode_proof(proof)})

    assert len(facilitator.verify_calls) == 1
    assert handler.calls == (1 if valid else 0)
    assert len(facilitator.settle_calls) == (1 if valid else 0)
    assert response.status_code == (200 if valid else 402)


def test_facilitator_outage_is_503_not_402(handler, payer):
    facilitator = FakeFacilitator(verify_error=FacilitatorUnavailable("down"))
    client = TestClient(build_gate_app(facilitator, handler))
    proof = build_payment_proof(challenge(client), payer)

    response = client.post("/agents/x/invoke", json={}, headers={X_PAYMENT: encode_proof(proof)})

    assert response.status_code == 503
    assert response.json()["error"] == "Service Unavailable"
    assert X_PAYMENT_REQUIRED not in response.headers
    assert handler.calls == 0
    assert len(facilitator.verify_calls) == 1


def test_slow_facilitator_times_out_as_503(handler, payer):
    facilitator = FakeFacilitator(delay=1.0)
    client = TestClient(build_gate_app(facilitator, handler, facilitator_timeout=0.05))
    proof = build_payment_proof(challenge(client), payer)

    response = client.post("/agents/x/invoke", json={}, headers={X_PAYMENT: encode_proof(proof)})

    assert response.status_code == 503
    assert handler.calls == 0


def test_handler_exception_is_not_settled(handler, payer):
    facilitator = FakeFacilitator()
    handler.fail_with = RuntimeError("boom")
    client = TestClient(build_gate_app(facilitator, handler))
    proof = build_payment_proof(challenge(client), payer)

    response = client.post(
        "/agents/x/invoke",
        json={},
        headers={X_PAYMENT: encode_proof(proof), X_REQUEST_ID: "req_boom"},
    )

    assert response.status_code == 500
    assert response.json()["requestId"] == "req_boom"
    assert response.headers[X_REQUEST_ID] == "req_boom"
    assert X_PAYMENT_RESPONSE not in response.headers
    assert handler.calls == 1
    assert facilitator.settle_calls == []


def test_handler_error_status_is_not_settled(handler, payer):
    facilitator = FakeFacilitator()
    handler.status = 404
    client = TestClient(build_gate_app(facilitator, handler))
    proof = build_payment_proof(challenge(client), payer)

    response = client.post("/agents/x/invoke", json={}, headers={X_PAYMENT: encode_proof(proof)})

    assert response.status_code == 404
    assert X_PAYMENT_RESPONSE not in response.headers
    assert facilitator.settle_calls == []


def test_settlement_rejection_discards_body_and_challenges_again(handler, payer):
    facilitator = FakeFacilitator(settle_error=PaymentVerificationFailed("rejected"))
    client = TestClient(build_gate_app(facilitator, handler))
    proof = build_payment_proof(challenge(client), payer)

    response = client.post("/agents/x/invoke", json={}, headers={X_PAYMENT: encode_proof(proof)})

    assert response.status_code == 402
    assert "answer" not in response.text
    assert X_PAYMENT_RESPONSE not in response.headers
    assert handler.calls == 1


def test_settlement_outage_is_503(handler, payer):
    facilitator = FakeFacilitator(settle_error=FacilitatorUnavailable("down"))
    client = TestClient(build_gate_app(facilitator, handler))
    proof = build_payment_proof(challenge(client), payer)

    response = client.post("/agents/x/invoke", json={}, headers={X_PAYMENT: encode_proof(proof)})

    assert response.status_code == 503
    assert X_PAYMENT_RESPONSE not in response.headers


def test_concurrent_paid_requests_each_settle_once(handler, payer):
    facilitator = LocalFacilitator()
    app = build_gate_app(facilitator, handler)
    requirement = challenge(TestClient(app))

    async def pay_many():
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            proofs = [build_payment_proof(requirement, payer) for _ in range(5)]
            return await asyncio.gather(*[
                client.post("/agents/x/invoke", json={}, headers={X_PAYMENT: encode_proof(p)})
                for p in proofs
            ])

    responses = asyncio.run(pay_many())

    assert [r.status_code for r in responses] == [200] * 5
    transactions = {decode_receipt(r.headers[X_PAYMENT_RESPONSE]).transaction for r in responses}
    assert len(transactions) == 5
    assert handler.calls == 5
