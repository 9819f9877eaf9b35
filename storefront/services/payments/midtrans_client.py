"""
Midtrans Snap API client with structured error handling.

This module wraps the Snap transaction endpoint used to start a hosted
payment and the signature check applied to incoming payment notifications.
Requests are sent once; callers decide whether a failed checkout is retried.
"""

import base64
import hashlib
import hmac
from dataclasses import dataclass
from typing import Any, Optional, Sequence, Union
from uuid import UUID

import httpx

from storefront.core.config import Settings, get_settings
from storefront.core.logging import get_logger, log_performance

logger = get_logger(__name__)

SNAP_TRANSACTIONS_PATH = "/snap/v1/transactions"


class GatewayError(Exception):
    """Base exception for payment gateway errors."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        **context: Any,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.context = context


class GatewayConfigurationError(GatewayError):
    """Raised when the client is missing required credentials."""

    pass


class GatewayValidationError(GatewayError):
    """Raised when a transaction request is rejected before being sent."""

    pass


class GatewayRequestError(GatewayError):
    """Raised when the gateway rejects a request or answers without a token."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        **context: Any,
    ):
        super().__init__(message, code="GATEWAY_REQUEST_FAILED", **context)
        self.status_code = status_code


class GatewayConnectionError(GatewayError):
    """Raised when the gateway cannot be reached."""

    pass


@dataclass(frozen=True)
class CustomerInfo:
    name: str
    email: str
    phone: Optional[str] = None


@dataclass(frozen=True)
class LineItem:
    """Product line sent to the gateway; price is a whole-unit amount."""

    id: str
    name: str
    price: int
    quantity: int


@dataclass(frozen=True)
class TransactionToken:
    """Token and hosted payment page returned by Snap."""

    token: str
    redirect_url: Optional[str] = None


class MidtransClient:
    """
    Client for the Midtrans Snap payment gateway.

    Attributes:
        server_key: Merchant server key, used for Basic auth and signatures
        base_url: Snap API base URL (sandbox or production)
        timeout: Request timeout in seconds
    """

    def __init__(
        self,
        server_key: Optional[str],
        base_url: str = "https://app.sandbox.midtrans.com",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize Midtrans client.

        Args:
            server_key: Merchant server key
            base_url: Snap API base URL
            timeout: Request timeout in seconds
            transport: Optional httpx transport, used to substitute the network
        """
        self.server_key = server_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def ensure_configured(self) -> str:
        """
        Return the server key.

        Raises:
            GatewayConfigurationError: If no server key is configured
        """
        if not self.server_key:
            logger.error("Midtrans server key is not configured")
            raise GatewayConfigurationError(
                "Payment gateway server key is not configured",
                code="GATEWAY_NOT_CONFIGURED",
            )
        return self.server_key

    def _auth_header(self, server_key: str) -> str:
        encoded = base64.b64encode(f"{server_key}:".encode("utf-8")).decode("ascii")
        return f"Basic {encoded}"

    @staticmethod
    def _validate_request(
        order_id: str,
        gross_amount: int,
        line_items: Sequence[LineItem],
    ) -> None:
        if not line_items:
            raise GatewayValidationError(
                "Transaction must contain at least one line item",
                code="EMPTY_LINE_ITEMS",
                order_id=order_id,
            )

        for item in line_items:
            if item.quantity <= 0:
                raise GatewayValidationError(
                    "Line item quantity must be positive",
                    code="INVALID_QUANTITY",
                    order_id=order_id,
                    item_id=item.id,
                )
            if item.price < 0:
                raise GatewayValidationError(
                    "Line item price must not be negative",
                    code="INVALID_PRICE",
                    order_id=order_id,
                    item_id=item.id,
                )

        items_total = sum(item.price * item.quantity for item in line_items)
        if items_total != gross_amount:
            raise GatewayValidationError(
                "Gross amount does not match the sum of line items",
                code="AMOUNT_MISMATCH",
                order_id=order_id,
                gross_amount=gross_amount,
                items_total=items_total,
            )

    def _build_payload(
        self,
        order_id: str,
        gross_amount: int,
        customer: CustomerInfo,
        line_items: Sequence[LineItem],
    ) -> dict[str, Any]:
        customer_details: dict[str, Any] = {
            "first_name": customer.name,
            "email": customer.email,
        }
        if customer.phone:
            customer_details["phone"] = customer.phone

        return {
            "transaction_details": {
                "order_id": order_id,
                "gross_amount": gross_amount,
            },
            "customer_details": customer_details,
            "item_details": [
                {
                    "id": item.id,
                    "price": item.price,
                    "quantity": item.quantity,
                    "name": item.name,
                }
                for item in line_items
            ],
        }

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"

        messages = body.get("error_messages") if isinstance(body, dict) else None
        if messages:
            return str(messages[0])
        if isinstance(body, dict) and body.get("status_message"):
            return str(body["status_message"])
        return f"HTTP {response.status_code}"

    async def create_transaction(
        self,
        order_id: Union[UUID, str],
        gross_amount: int,
        customer: CustomerInfo,
        line_items: Sequence[LineItem],
    ) -> TransactionToken:
        """
        Create a Snap transaction for an order.

        The amount check happens before any network activity, so a rejected
        request never reaches the gateway.

        Args:
            order_id: Order identifier, reused as the gateway order id
            gross_amount: Total to charge in whole currency units
            customer: Buyer contact details
            line_items: Products being purchased

        Returns:
            TransactionToken with the Snap token and redirect URL

        Raises:
            GatewayConfigurationError: If no server key is configured
            GatewayValidationError: If the amount or items are invalid
            GatewayRequestError: If the gateway rejects the request
            GatewayConnectionError: If the gateway cannot be reached
        """
        order_ref = str(order_id)
        server_key = self.ensure_configured()
        self._validate_request(order_ref, gross_amount, line_items)

        payload = self._build_payload(order_ref, gross_amount, customer, line_items)
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Authorization": self._auth_header(server_key),
        }

        logger.info(
            "Creating Midtrans transaction",
            order_id=order_ref,
            gross_amount=gross_amount,
            item_count=len(line_items),
        )

        try:
            with log_performance(
                logger, "midtrans.create_transaction", order_id=order_ref
            ):
                async with httpx.AsyncClient(
                    base_url=self.base_url,
                    timeout=self.timeout,
                    transport=self._transport,
                ) as client:
                    response = await client.post(
                        SNAP_TRANSACTIONS_PATH,
                        json=payload,
                        headers=headers,
                    )
        except httpx.TimeoutException as e:
            logger.error(
                "Midtrans request timed out",
                order_id=order_ref,
                error=str(e),
            )
            raise GatewayConnectionError(
                "Payment gateway request timed out",
                code="GATEWAY_TIMEOUT",
                order_id=order_ref,
            ) from e
        except httpx.RequestError as e:
            logger.error(
                "Midtrans request failed",
                order_id=order_ref,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise GatewayConnectionError(
                "Payment gateway unavailable",
                code="GATEWAY_UNAVAILABLE",
                order_id=order_ref,
            ) from e

        if response.status_code < 200 or response.status_code >= 300:
            message = self._error_message(response)
            logger.error(
                "Midtrans rejected transaction",
                order_id=order_ref,
                status_code=response.status_code,
                error=message,
            )
            raise GatewayRequestError(
                message,
                status_code=response.status_code,
                order_id=order_ref,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise GatewayRequestError(
                "Payment gateway returned an invalid response",
                status_code=response.status_code,
                order_id=order_ref,
            ) from e

        token = body.get("token") if isinstance(body, dict) else None
        if not token:
            logger.error(
                "Midtrans response missing token",
                order_id=order_ref,
                status_code=response.status_code,
            )
            raise GatewayRequestError(
                "Payment gateway response did not include a token",
                status_code=response.status_code,
                order_id=order_ref,
            )

        logger.info("Midtrans transaction created", order_id=order_ref)

        return TransactionToken(token=token, redirect_url=body.get("redirect_url"))

    def compute_signature(
        self,
        order_id: str,
        status_code: str,
        gross_amount: str,
    ) -> str:
        """
        Compute the notification signature for the given fields.

        Raises:
            GatewayConfigurationError: If no server key is configured
        """
        server_key = self.ensure_configured()
        raw = f"{order_id}{status_code}{gross_amount}{server_key}"
        return hashlib.sha512(raw.encode("utf-8")).hexdigest()

    def verify_notification_signature(
        self,
        order_id: str,
        status_code: Optional[str],
        gross_amount: Optional[str],
        signature_key: Optional[str],
    ) -> bool:
        """
        Verify the ``signature_key`` of a payment notification.

        The expected value is SHA-512 over order id, status code, gross amount
        and the server key, compared in constant time.

        Returns:
            True if the signature matches
        """
        if not status_code or not gross_amount or not signature_key:
            return False

        expected = self.compute_signature(order_id, status_code, gross_amount)
        return hmac.compare_digest(expected, signature_key.strip().lower())


def get_midtrans_client(settings: Optional[Settings] = None) -> MidtransClient:
    """Build a Midtrans client from application settings."""
    settings = settings or get_settings()
    return MidtransClient(
        server_key=settings.midtrans_server_key,
        base_url=settings.midtrans_base_url,
        timeout=settings.midtrans_timeout_seconds,
    )
