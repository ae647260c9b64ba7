"""Local stand-in for the card gateway; card tokens starting with decline are refused"""

import uuid
from fastapi import FastAPI, Header, HTTPException
from pydantic import BaseModel

app = FastAPI(title="Mock Payment Gateway", version="1.0.0")

# Idempotency-Key -> first response
_responses: dict = {}


class ChargeRequest(BaseModel):
    companyToken: str
    cardToken: str
    amount: int
    currency: str
    reference: str
    description: str = ""
    metadata: dict = {}


@app.get("/health")
def health(): return {"status": "ok"}


@app.post("/charge")
def charge(
    body: ChargeRequest,
    authorization: str | None = Header(None),
    idempotency_key: str | None = Header(None),
):
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="missing api key")
    if idempotency_key and idempotency_key in _responses:
        return _responses[idempotency_key]

    if body.cardToken.startswith("decline"):
        result = {
            "status": "declined",
            "transaction_id": f"gw_{uuid.uuid4().hex[:16]}",
            "error_message": "Insufficient funds",
        }
    else:
        result = {"status": "success", "transaction_id": f"gw_{uuid.uuid4().hex[:16]}"}

    if idempotency_key:
        _responses[idempotency_key] = result
    return result
