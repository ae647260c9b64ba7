"""Payment gateway HTTP client for charging tokenized cards"""

import logging

import httpx

from loan_engine.config import settings
from loan_engine.domain.exceptions import PaymentGatewayError
from loan_engine.domain.models import ChargeResult
from loan_engine.infrastructure.observability.metrics import gateway_latency_histogram

logger = logging.getLogger(__name__)

APPROVED_STATUSES = ("success", "approved")


class PaymentGatewayClient:
    """Client for the external card-charging gateway"""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        company_token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url or settings.payment_gateway_base
        self.api_key = api_key if api_key is not None else settings.payment_gateway_api_key
        self.company_token = company_token if company_token is not None else settings.payment_gateway_company_token
        self.timeout = timeout or settings.http_timeout_seconds
        self.transport = transport

    async def charge(
        self,
        amount: int,
        currency: str,
        card_token: str,
        mandate_reference: str,
        deduction_id: str,
        loan_id: str,
    ) -> ChargeResult:
        """
        Charge a stored card once.

        A decline comes back as ChargeResult(success=False). Transport and HTTP
        failures raise, so the caller can record them as a failed attempt.

        Raises:
            PaymentGatewayError: missing credentials, timeout, HTTP error or malformed response
        """
        if not self.api_key or not self.company_token:
            raise PaymentGatewayError("Payment gateway credentials not configured")

        payload = {
            "companyToken": self.company_token,
            "cardToken": card_token,
            "amount": amount,
            "currency": currency,
            "reference": mandate_reference,
            "description": f"Loan repayment - {mandate_reference}",
            "metadata": {"deduction_id": deduction_id, "loan_id": loan_id},
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            # Gateway de-duplicates retries of the same deduction
            "Idempotency-Key": f"{deduction_id}:{loan_id}",
        }

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                with gateway_latency_histogram.time():
                    response = await client.post(f"{self.base_url}/charge", json=payload, headers=headers)
                response.raise_for_status()
                data = response.json()

            except httpx.TimeoutException as e:
                raise PaymentGatewayError(f"Payment gateway timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                raise PaymentGatewayError(f"Payment gateway error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                raise PaymentGatewayError(f"Payment gateway unreachable: {e}") from e
            except ValueError as e:
                raise PaymentGatewayError(f"Invalid response from payment gateway: {e}") from e

        if not isinstance(data, dict):
            raise PaymentGatewayError(f"Invalid response from payment gateway: expected an object, got {type(data).__name__}")

        if data.get("status") in APPROVED_STATUSES:
            return ChargeResult(success=True, transaction_id=data.get("transaction_id"))

        logger.info(
            "Charge declined",
            extra={"deduction_id": deduction_id, "mandate_reference": mandate_reference},
        )
        return ChargeResult(
            success=False,
            transaction_id=data.get("transaction_id"),
            error=data.get("error_message") or "Payment declined",
        )
