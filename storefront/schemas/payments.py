"""
Payment notification schemas for the Midtrans webhook.

Field names mirror the gateway's notification body so payloads validate
without renaming.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


class MidtransNotification(BaseModel):
    """Asynchronous payment status notification sent by the gateway."""

    order_id: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Order identifier sent at transaction creation",
    )
    transaction_status: str = Field(
        ...,
        min_length=1,
        max_length=64,
        description="Gateway transaction status (e.g., 'settlement')",
    )
    transaction_id: Optional[str] = Field(
        None,
        max_length=255,
        description="Gateway transaction identifier",
    )
    payment_type: Optional[str] = Field(
        None,
        max_length=64,
        description="Payment method used (e.g., 'bank_transfer')",
    )
    fraud_status: Optional[str] = Field(
        None,
        max_length=64,
        description="Fraud screening result for card captures",
    )
    status_code: Optional[str] = Field(
        None,
        max_length=8,
        description="Gateway status code, part of the signature",
    )
    gross_amount: Optional[str] = Field(
        None,
        max_length=32,
        description="Charged amount as sent by the gateway, part of the signature",
    )
    signature_key: Optional[str] = Field(
        None,
        max_length=256,
        description="SHA-512 notification signature",
    )

    @field_validator("order_id", "transaction_status")
    @classmethod
    def strip_required(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("Field cannot be blank")
        return stripped

    @field_validator("status_code", "gross_amount", mode="before")
    @classmethod
    def coerce_numeric_to_string(cls, v: Any) -> Any:
        """Numbers are kept verbatim as strings so signatures stay reproducible."""
        if isinstance(v, bool):
            return v
        if isinstance(v, (int, float)):
            return str(v)
        return v

    model_config = {
        "extra": "ignore",
        "json_schema_extra": {
            "examples": [
                {
                    "order_id": "123e4567-e89b-12d3-a456-426614174000",
                    "transaction_status": "settlement",
                    "transaction_id": "9aed5972-5b6a-401e-894b-a32c91ed1a3a",
                    "payment_type": "bank_transfer",
                    "fraud_status": "accept",
                    "status_code": "200",
                    "gross_amount": "100000.00",
                    "signature_key": "<sha512 hex digest>",
                }
            ]
        },
    }


class WebhookAckResponse(BaseModel):
    """Acknowledgement returned to the gateway."""

    success: bool = True


class WebhookErrorResponse(BaseModel):
    """Error body returned to the gateway."""

    error: str
