"""
EIP-712 signing of payment authorizations.

The client signs a ``PaymentAuthorization`` that binds the payer, payee,
amount (in token base units), resource, validity window and a random nonce to
the network's USDC contract and chain id. The facilitator recovers the signer
from the same typed data.
"""

import secrets
import time
from decimal import Decimal
from typing import Any, Dict, Optional

from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_account.signers.local import LocalAccount
from web3 import Web3

from x402_market.payment.networks import get_network_config
from x402_market.payment.types import PaymentProof, PaymentRequirement

AUTHORIZATION_TYPES = {
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "chainId", "type": "uint256"},
        {"name": "verifyingContract", "type": "address"},
    ],
    "PaymentAuthorization": [
        {"name": "from", "type": "address"},
        {"name": "to", "type": "address"},
        {"name": "value", "type": "uint256"},
        {"name": "resource", "type": "string"},
        {"name": "validAfter", "type": "uint256"},
        {"name": "validBefore", "type": "uint256"},
        {"name": "nonce", "type": "bytes32"},
    ],
}

DOMAIN_NAME = "x402 Agent Marketplace"
DOMAIN_VERSION = "1"

# Authorizations become valid slightly in the past to absorb clock skew
BACKDATE_SECONDS = 60


def to_base_units(amount: str, decimals: int) -> int:
    """Convert a decimal token amount to integer base units.

    Raises:
        ValueError: If the amount has more precision than the token supports
    """
    scaled = Decimal(amount) * (Decimal(10) ** decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"Amount {amount} cannot be represented with {decimals} decimals")
    return int(scaled)


def build_typed_data(proof_fields: Dict[str, Any]) -> Dict[str, Any]:
    """Build the EIP-712 structure for a set of proof fields.

    ``proof_fields`` holds the wire (camelCase) form of a proof, without the
    signature.
    """
    network = get_network_config(proof_fields["network"])
    nonce = proof_fields["nonce"]
    nonce_bytes = bytes.fromhex(nonce[2:] if nonce.startswith("0x") else nonce)
    if len(nonce_bytes) != 32:
        raise ValueError(f"Nonce must be 32 bytes, got {len(nonce_bytes)}")
    return {
        "types": AUTHORIZATION_TYPES,
        "primaryType": "PaymentAuthorization",
        "domain": {
            "name": DOMAIN_NAME,
            "version": DOMAIN_VERSION,
            "chainId": network.chain_id,
            "verifyingContract": Web3.to_checksum_address(network.usdc_address),
        },
        "message": {
            "from": Web3.to_checksum_address(proof_fields["payer"]),
            "to": Web3.to_checksum_address(proof_fields["payTo"]),
            "value": to_base_units(proof_fields["amount"], network.usdc_decimals),
            "resource": proof_fields["resource"],
            "validAfter": int(proof_fields["validAfter"]),
            "validBefore": int(proof_fields["validBefore"]),
            "nonce": nonce_bytes,
        },
    }


def build_payment_proof(
    requirement: PaymentRequirement,
    account: LocalAccount,
    *,
    now: Optional[int] = None,
    nonce: Optional[bytes] = None,
) -> PaymentProof:
    """Sign an authorization that satisfies ``requirement``."""
    now = int(time.time()) if now is None else now
    nonce_bytes = nonce if nonce is not None else secrets.token_bytes(32)
    valid_before = now + requirement.max_timeout_seconds
    if requirement.expiry is not None:
        valid_before = min(valid_before, requirement.expiry)

    fields = {
        "network": requirement.network,
        "resource": requirement.resource,
        "amount": requirement.amount,
        "payTo": requirement.pay_to,
        "payer": account.address,
        "validAfter": now - BACKDATE_SECONDS,
        "validBefore": valid_before,
        "nonce": requirement.nonce or Web3.to_hex(nonce_bytes),
    }
    signable = encode_typed_data(full_message=build_typed_data(fields))
    signed = account.sign_message(signable)

    return PaymentProof.model_validate(
        {
            **fields,
            "scheme": requirement.scheme,
            "asset": requirement.asset,
            "signature": Web3.to_hex(signed.signature),
        }
    )


def recover_payer(proof: PaymentProof) -> str:
    """Recover the address that signed ``proof``.

    Raises:
        ValueError: If the proof fields cannot be encoded
    """
    fields = proof.to_wire()
    signable = encode_typed_data(full_message=build_typed_data(fields))
    return Account.recover_message(signable, signature=proof.signature)
