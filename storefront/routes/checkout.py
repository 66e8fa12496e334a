# storefront/routes/checkout.py
from fastapi import APIRouter, Depends, HTTPException, status
import asyncpg
from storefront.core.database import get_db_connection
from storefront.core.security import get_current_buyer
from storefront.core.store import PostgresStore
from storefront.core.utils import load_payment_settings
from storefront.models.checkout import (
    CardSubmission,
    CheckoutSessionView,
    CheckoutStep,
    OTPVerifyRequest,
    ShippingDetails,
    StartCheckoutRequest,
)
from storefront.services import sessions
from storefront.services.cart import Cart, cart_key
from storefront.services.errors import (
    CheckoutBusyError,
    CheckoutError,
    StepError,
    SubmissionError,
    ValidationError,
    VerificationRequiredError,
)
from storefront.services.orchestrator import CheckoutOrchestrator
import logging

router = APIRouter()
logger = logging.getLogger(__name__)


def _checkout_http_error(e: CheckoutError) -> HTTPException:
    detail = {"code": e.code, "message": e.message, "retryable": e.retryable}
    if isinstance(e, ValidationError):
        detail["fields"] = e.fields
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail)
    if isinstance(e, (StepError, CheckoutBusyError, VerificationRequiredError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detail)
    if isinstance(e, SubmissionError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail)
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


def _get_orchestrator(session_id: str, buyer_id: str) -> CheckoutOrchestrator:
    orchestrator = sessions.registry.get(session_id, buyer_id)
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Checkout session not found",
        )
    return orchestrator


def _internal_error(e: Exception, action: str) -> HTTPException:
    logger.error(f"Error {action}: {e}")
    if isinstance(e, HTTPException):
        return e
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Error {action}",
    )


@router.post("/sessions", response_model=CheckoutSessionView)
async def start_checkout(
    request: StartCheckoutRequest,
    conn: asyncpg.Connection = Depends(get_db_connection),
    buyer_id: str = Depends(get_current_buyer),
):
    try:
        from_cart = request.items is None
        if from_cart:
            items = await Cart(PostgresStore(conn), cart_key(buyer_id)).line_items()
        else:
            items = request.items

        payment_settings = await load_payment_settings(conn)
        orchestrator = sessions.registry.start(buyer_id, items, payment_settings, from_cart=from_cart)
        return orchestrator.view()
    except CheckoutError as e:
        raise _checkout_http_error(e)
    except Exception as e:
        raise _internal_error(e, "starting checkout")


@router.get("/sessions/{session_id}", response_model=CheckoutSessionView)
async def get_checkout(session_id: str, buyer_id: str = Depends(get_current_buyer)):
    return _get_orchestrator(session_id, buyer_id).view()


@router.delete("/sessions/{session_id}")
async def abandon_checkout(session_id: str, buyer_id: str = Depends(get_current_buyer)):
    _get_orchestrator(session_id, buyer_id)
    sessions.registry.discard(session_id)
    return {"message": "Checkout session abandoned"}


@router.post("/sessions/{session_id}/shipping", response_model=CheckoutSessionView)
async def submit_shipping(
    session_id: str,
    shipping: ShippingDetails,
    buyer_id: str = Depends(get_current_buyer),
):
    orchestrator = _get_orchestrator(session_id, buyer_id)
    try:
        return await orchestrator.submit_shipping(shipping)
    except CheckoutError as e:
        raise _checkout_http_error(e)
    except Exception as e:
        raise _internal_error(e, "saving shipping details")


@router.post("/sessions/{session_id}/payment", response_model=CheckoutSessionView)
async def submit_payment(
    session_id: str,
    card: CardSubmission,
    buyer_id: str = Depends(get_current_buyer),
):
    orchestrator = _get_orchestrator(session_id, buyer_id)
    try:
        return await orchestrator.submit_payment(card)
    except CheckoutError as e:
        raise _checkout_http_error(e)
    except Exception as e:
        raise _internal_error(e, "capturing payment")


@router.post("/sessions/{session_id}/otp/verify", response_model=CheckoutSessionView)
async def verify_otp(
    session_id: str,
    request: OTPVerifyRequest,
    buyer_id: str = Depends(get_current_buyer),
):
    orchestrator = _get_orchestrator(session_id, buyer_id)
    try:
        return await orchestrator.verify_otp(request.code, pasted=request.pasted)
    except CheckoutError as e:
        raise _checkout_http_error(e)
    except Exception as e:
        raise _internal_error(e, "verifying OTP")


@router.post("/sessions/{session_id}/otp/resend", response_model=CheckoutSessionView)
async def resend_otp(session_id: str, buyer_id: str = Depends(get_current_buyer)):
    orchestrator = _get_orchestrator(session_id, buyer_id)
    try:
        return await orchestrator.resend_otp()
    except CheckoutError as e:
        raise _checkout_http_error(e)
    except Exception as e:
        raise _internal_error(e, "resending OTP")


@router.post("/sessions/{session_id}/back", response_model=CheckoutSessionView)
async def go_back(session_id: str, buyer_id: str = Depends(get_current_buyer)):
    orchestrator = _get_orchestrator(session_id, buyer_id)
    try:
        return await orchestrator.go_back()
    except CheckoutError as e:
        raise _checkout_http_error(e)
    except Exception as e:
        raise _internal_error(e, "going back")


@router.post("/sessions/{session_id}/edit/{step}", response_model=CheckoutSessionView)
async def edit_step(
    session_id: str,
    step: CheckoutStep,
    buyer_id: str = Depends(get_current_buyer),
):
    orchestrator = _get_orchestrator(session_id, buyer_id)
    try:
        return await orchestrator.edit(step)
    except CheckoutError as e:
        raise _checkout_http_error(e)
    except Exception as e:
        raise _internal_error(e, f"editing {step.value}")


@router.post("/sessions/{session_id}/confirm", response_model=CheckoutSessionView)
async def confirm_checkout(
    session_id: str,
    conn: asyncpg.Connection = Depends(get_db_connection),
    buyer_id: str = Depends(get_current_buyer),
):
    orchestrator = _get_orchestrator(session_id, buyer_id)
    try:
        view = await orchestrator.confirm()
    except CheckoutError as e:
        raise _checkout_http_error(e)
    except Exception as e:
        raise _internal_error(e, "confirming order")

    if view.step == CheckoutStep.CONFIRMATION and orchestrator.session.from_cart:
        # The order is placed at this point; a cart that fails to clear is only logged
        try:
            await Cart(PostgresStore(conn), cart_key(buyer_id)).clear()
        except Exception as e:
            logger.error(f"Error clearing cart for buyer {buyer_id}: {e}")

    if view.step == CheckoutStep.CONFIRMATION:
        # Placed orders are served from /orders from here on
        sessions.registry.discard(session_id)
    return view
