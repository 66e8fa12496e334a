# storefront/core/utils.py
import asyncio
from typing import Any, Coroutine, List, Set
from datetime import datetime, timedelta
from storefront.core.config import settings
from storefront.models.checkout import PaymentSettings
from storefront.models.order import OrderStatus, TransactionStatus
import logging

logger = logging.getLogger(__name__)

_background_tasks: Set[asyncio.Task] = set()

PAYMENT_SETTING_KEYS = (
    "card_otp_enabled",
    "card_otp_length",
    "card_otp_expiry_seconds",
    "card_otp_max_attempts",
    "card_otp_channel",
    "card_require_verification",
)

def spawn_detached(coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
    """Run a coroutine without awaiting it, keeping a reference until it finishes."""
    task = asyncio.create_task(coro)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task

def _setting_text(value) -> str:
    return str(value).strip().strip('"')

def _as_bool(value, default: bool) -> bool:
    if value is None:
        return default
    return _setting_text(value).lower() not in ("false", "0", "no", "off")

def _as_positive_int(value, default: int) -> int:
    try:
        parsed = int(_setting_text(value))
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default

def default_payment_settings() -> PaymentSettings:
    return PaymentSettings(
        otp_enabled=settings.OTP_ENABLED,
        code_length=settings.OTP_CODE_LENGTH,
        expiry_seconds=settings.OTP_EXPIRY_SECONDS,
        max_attempts=settings.OTP_MAX_ATTEMPTS,
        channel=settings.OTP_CHANNEL,
        require_card_verification=settings.REQUIRE_CARD_VERIFICATION,
    )

async def load_payment_settings(conn) -> PaymentSettings:
    """Read verification parameters from system_settings, falling back to config defaults."""
    defaults = default_payment_settings()
    try:
        rows = await conn.fetch(
            "SELECT key, value FROM system_settings WHERE key = ANY($1::text[])",
            list(PAYMENT_SETTING_KEYS),
        )
    except Exception as e:
        logger.error(f"Error loading payment settings: {e}")
        return defaults

    values = {r["key"]: r["value"] for r in rows}
    channel = values.get("card_otp_channel")
    return PaymentSettings(
        otp_enabled=_as_bool(values.get("card_otp_enabled"), defaults.otp_enabled),
        code_length=_as_positive_int(values.get("card_otp_length"), defaults.code_length),
        expiry_seconds=_as_positive_int(values.get("card_otp_expiry_seconds"), defaults.expiry_seconds),
        max_attempts=_as_positive_int(values.get("card_otp_max_attempts"), defaults.max_attempts),
        channel=_setting_text(channel) if channel else defaults.channel,
        require_card_verification=_as_bool(values.get("card_require_verification"), defaults.require_card_verification),
    )

async def fail_stale_transactions(minutes: int = 30) -> int:
    """Mark pending transactions older than `minutes` as failed."""
    import asyncpg

    cutoff = datetime.utcnow() - timedelta(minutes=minutes)
    conn = await asyncpg.connect(settings.DATABASE_URL)
    try:
        async with conn.transaction():
            rows = await conn.fetch(
                """
                UPDATE payment_transactions
                SET status = $1, updated_at = CURRENT_TIMESTAMP
                WHERE status = $2 AND created_at < $3
                RETURNING id
                """,
                TransactionStatus.FAILED,
                TransactionStatus.PENDING,
                cutoff,
            )
            stale_ids = [r["id"] for r in rows]
            if stale_ids:
                await conn.execute(
                    """
                    UPDATE orders
                    SET status = $1, updated_at = CURRENT_TIMESTAMP
                    WHERE transaction_id = ANY($2::text[]) AND status = $3
                    """,
                    OrderStatus.FAILED,
                    stale_ids,
                    OrderStatus.PENDING,
                )
        logger.info(f"Marked {len(stale_ids)} stale transactions as failed")
        return len(stale_ids)
    finally:
        await conn.close()


async def create_notification(
    conn,
    buyer_id: str,
    message: str,
    order_id: int | None = None,
) -> None:
    """Insert a notification for a buyer"""
    try:
        await conn.execute(
            """
            INSERT INTO notifications (buyer_id, order_id, message)
            VALUES ($1, $2, $3)
            """,
            buyer_id,
            order_id,
            message,
        )
    except Exception as e:
        logger.error(f"Error creating notification: {e}")


async def fetch_notifications(
    conn,
    buyer_id: str,
    skip: int = 0,
    limit: int = 100,
) -> List[dict]:
    """Fetch notifications for a buyer"""
    rows = await conn.fetch(
        """
        SELECT * FROM notifications
        WHERE buyer_id = $1
        ORDER BY created_at DESC
        LIMIT $2 OFFSET $3
        """,
        buyer_id,
        limit,
        skip,
    )
    return [dict(r) for r in rows]
