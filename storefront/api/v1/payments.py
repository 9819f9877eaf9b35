"""
Payment gateway webhook endpoint.

The gateway posts asynchronous payment notifications here. Every outcome is
answered with a JSON body: ``{"success": true}`` when the notification was
applied, ``{"error": "..."}`` otherwise, so the gateway can redeliver.
"""

from typing import Any, Callable, Coroutine

from fastapi import APIRouter, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute

from storefront.api.deps import ReconcilerDep
from storefront.core.logging import get_logger, log_performance
from storefront.schemas.payments import WebhookAckResponse, WebhookErrorResponse
from storefront.services.orders.repository import OrderNotFoundError
from storefront.services.payments.midtrans_client import GatewayConfigurationError
from storefront.services.payments.reconciler import (
    InvalidSignatureError,
    NotificationValidationError,
)

logger = get_logger(__name__)

WEBHOOK_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}


def _webhook_response(content: dict[str, Any], status_code: int) -> JSONResponse:
    return JSONResponse(
        content=content,
        status_code=status_code,
        headers=WEBHOOK_CORS_HEADERS,
    )


class WebhookRoute(APIRoute):
    """
    Route class that keeps failures inside the webhook contract.

    Errors raised while resolving dependencies (for example a missing
    database) happen before the endpoint body runs. They are answered here
    with the same ``{"error": ...}`` body, a 4xx status and the CORS
    headers, instead of reaching the application-wide handlers.
    """

    def get_route_handler(self) -> Callable[[Request], Coroutine[Any, Any, Response]]:
        original_route_handler = super().get_route_handler()

        async def webhook_route_handler(request: Request) -> Response:
            try:
                return await original_route_handler(request)
            except HTTPException as e:
                logger.warning(
                    "Webhook dependency failed",
                    status_code=e.status_code,
                    detail=e.detail,
                )
                status_code = e.status_code
                if not 400 <= status_code < 500:
                    status_code = status.HTTP_400_BAD_REQUEST
                return _webhook_response({"error": str(e.detail)}, status_code)
            except Exception as e:
                logger.error(
                    "Webhook request failed",
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
                return _webhook_response(
                    {"error": str(e) or type(e).__name__},
                    status.HTTP_400_BAD_REQUEST,
                )

        return webhook_route_handler


router = APIRouter(prefix="/payments", tags=["payments"], route_class=WebhookRoute)


@router.options(
    "/midtrans/webhook",
    include_in_schema=False,
)
async def midtrans_webhook_preflight() -> Response:
    return Response(status_code=status.HTTP_200_OK, headers=WEBHOOK_CORS_HEADERS)


@router.post(
    "/midtrans/webhook",
    summary="Midtrans payment notification",
    description="Apply a gateway payment notification to its order",
    response_model=WebhookAckResponse,
    responses={
        400: {"model": WebhookErrorResponse},
        401: {"model": WebhookErrorResponse},
        404: {"model": WebhookErrorResponse},
    },
)
async def midtrans_webhook(
    request: Request,
    reconciler: ReconcilerDep,
) -> JSONResponse:
    """
    Handle a payment notification.

    Returns:
        200 with ``{"success": true}``; 400 for malformed or failed
        notifications and for a missing server key, 401 for a bad
        signature, 404 for an unknown order
    """
    try:
        payload = await request.json()
    except ValueError:
        logger.warning("Webhook body is not valid JSON")
        return _webhook_response(
            {"error": "Invalid JSON body"},
            status.HTTP_400_BAD_REQUEST,
        )

    try:
        with log_performance(logger, "webhook_reconciliation"):
            await reconciler.handle_notification(payload)
    except NotificationValidationError as e:
        return _webhook_response({"error": e.message}, status.HTTP_400_BAD_REQUEST)
    except InvalidSignatureError as e:
        return _webhook_response({"error": e.message}, status.HTTP_401_UNAUTHORIZED)
    except OrderNotFoundError as e:
        return _webhook_response({"error": str(e)}, status.HTTP_404_NOT_FOUND)
    except GatewayConfigurationError as e:
        logger.error("Webhook received but gateway is not configured")
        return _webhook_response({"error": e.message}, status.HTTP_400_BAD_REQUEST)
    except Exception as e:
        logger.error(
            "Webhook processing failed",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        return _webhook_response(
            {"error": str(e) or type(e).__name__},
            status.HTTP_400_BAD_REQUEST,
        )

    return _webhook_response({"success": True}, status.HTTP_200_OK)
