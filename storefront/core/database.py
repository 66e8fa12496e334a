# storefront/core/database.py
import asyncpg
from storefront.core.config import settings
import logging
import json

logger = logging.getLogger(__name__)

async def get_db_connection():
    conn = await asyncpg.connect(settings.DATABASE_URL)
    try:
        yield conn
    finally:
        await conn.close()

async def create_tables():
    conn = await asyncpg.connect(settings.DATABASE_URL)
    try:
        await conn.execute('''
        CREATE TABLE IF NOT EXISTS activity_logs (
            id SERIAL PRIMARY KEY,
            buyer_id VARCHAR(64),
            action VARCHAR(255) NOT NULL,
            entity_type VARCHAR(50) NOT NULL,
            entity_id VARCHAR(64),
            details JSONB,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        )
        ''')

        # One transaction per checkout session; retries reuse it
        await conn.execute('''
        CREATE TABLE IF NOT EXISTS payment_transactions (
            id VARCHAR(64) PRIMARY KEY,
            session_id VARCHAR(64) UNIQUE NOT NULL,
            buyer_id VARCHAR(64) NOT NULL,
            amount NUMERIC(12, 2) NOT NULL,
            currency VARCHAR(3) NOT NULL DEFAULT 'USD',
            card_last_four VARCHAR(4),
            card_brand VARCHAR(50),
            status VARCHAR(20) NOT NULL DEFAULT 'pending',
            order_id INTEGER,
            metadata JSONB,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        )
        ''')

        await conn.execute('''
        CREATE TABLE IF NOT EXISTS orders (
            id SERIAL PRIMARY KEY,
            buyer_id VARCHAR(64) NOT NULL,
            transaction_id VARCHAR(64) UNIQUE NOT NULL REFERENCES payment_transactions(id),
            status VARCHAR(20) NOT NULL DEFAULT 'pending',
            total_amount NUMERIC(12, 2) NOT NULL,
            currency VARCHAR(3) NOT NULL DEFAULT 'USD',
            shipping_address TEXT,
            shipping_details JSONB,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        )
        ''')

        await conn.execute('''
        CREATE TABLE IF NOT EXISTS order_items (
            id SERIAL PRIMARY KEY,
            order_id INTEGER REFERENCES orders(id) ON DELETE CASCADE,
            product_id VARCHAR(64) NOT NULL,
            seller_id VARCHAR(64),
            title VARCHAR(255) NOT NULL,
            quantity INTEGER NOT NULL,
            unit_price NUMERIC(12, 2) NOT NULL,
            total_price NUMERIC(12, 2) NOT NULL
        )
        ''')

        await conn.execute('''
        CREATE TABLE IF NOT EXISTS notifications (
            id SERIAL PRIMARY KEY,
            buyer_id VARCHAR(64) NOT NULL,
            order_id INTEGER REFERENCES orders(id) ON DELETE CASCADE,
            message TEXT NOT NULL,
            is_read BOOLEAN DEFAULT FALSE,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        )
        ''')

        await conn.execute('''
        CREATE TABLE IF NOT EXISTS system_settings (
            id SERIAL PRIMARY KEY,
            key VARCHAR(255) UNIQUE NOT NULL,
            value TEXT NOT NULL,
            description TEXT,
            updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        )
        ''')

        await conn.execute('''
        CREATE TABLE IF NOT EXISTS kv_store (
            key VARCHAR(255) PRIMARY KEY,
            value JSONB NOT NULL,
            updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        )
        ''')

        await conn.execute('''
        INSERT INTO system_settings (key, value, description)
        VALUES
            ('card_otp_enabled', 'true', 'Require a one-time code after card capture'),
            ('card_otp_length', '6', 'Number of digits in the one-time code'),
            ('card_otp_expiry_seconds', '60', 'Seconds before an issued code expires'),
            ('card_otp_max_attempts', '3', 'Rejected codes allowed before checkout is blocked'),
            ('card_otp_channel', 'mock_sms', 'Channel the code is delivered through'),
            ('card_require_verification', 'true', 'Require card verification before review')
        ON CONFLICT (key) DO NOTHING
        ''')

        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error(f"Error creating database tables: {e}")
        raise
    finally:
        await conn.close()

async def log_activity(conn, buyer_id, action, entity_type, entity_id=None, details=None):
    """Log buyer activity in the system"""
    try:
        if details is not None and not isinstance(details, str):
            try:
                details = json.dumps(details)
            except Exception:
                details = str(details)
        await conn.execute('''
            INSERT INTO activity_logs (buyer_id, action, entity_type, entity_id, details)
            VALUES ($1, $2, $3, $4, $5)
        ''', buyer_id, action, entity_type, None if entity_id is None else str(entity_id), details)
    except Exception as e:
        logger.error(f"Error logging activity: {e}")
        raise
