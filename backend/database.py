"""
Database Module - PostgreSQL Store
==================================
asyncpg-backed implementation of the storage port.

This module provides:
- AsyncPG connection pool for PostgreSQL
- Idempotent schema migrations (catalog, orders, payments, carts)
- PostgresStore / PostgresTransaction implementing IStore / IStoreTransaction

Every `for_update=True` read takes a row lock (SELECT ... FOR UPDATE), so two
transactions settling the same order or decrementing the same variant are
serialized by the database.

pip install asyncpg
"""

import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import asyncpg
import structlog

from config import settings
from schemas.commerce import (
    Order,
    OrderItem,
    OrderStatus,
    PaymentRecord,
    Product,
    ProductVariant,
)
from schemas.results import TransientError
from storage.ports import IStore, IStoreTransaction

# Configure logger
logger = structlog.get_logger().bind(component="database")


# =============================================================================
# CONNECTION POOL
# =============================================================================

class Database:
    """Async database connection pool manager"""

    _pool: Optional[asyncpg.Pool] = None
    _initialized: bool = False

    @classmethod
    async def initialize(cls, dsn: str = None):
        """Initialize the connection pool"""
        if cls._initialized:
            return

        try:
            cls._pool = await asyncpg.create_pool(
                dsn or settings.DATABASE_URL,
                min_size=settings.DB_MIN_POOL_SIZE,
                max_size=settings.DB_MAX_POOL_SIZE,
            )
            cls._initialized = True
            logger.info("database_pool_initialized")

            # Run migrations on startup
            await cls._run_migrations()

        except Exception as e:
            logger.error("database_init_failed", error=str(e))
            raise

    @classmethod
    async def close(cls):
        """Close the connection pool"""
        if cls._pool:
            await cls._pool.close()
            cls._pool = None
            cls._initialized = False
            logger.info("database_pool_closed")

    @classmethod
    @asynccontextmanager
    async def acquire(cls) -> AsyncIterator[asyncpg.Connection]:
        """Acquire a connection from the pool"""
        if not cls._pool:
            await cls.initialize()

        async with cls._pool.acquire() as conn:
            yield conn

    @classmethod
    async def _run_migrations(cls):
        """Run database migrations"""
        migrations = [
            """
            CREATE TABLE IF NOT EXISTS products (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                price NUMERIC(12, 2) NOT NULL CHECK (price >= 0),
                is_active BOOLEAN NOT NULL DEFAULT TRUE
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS product_variants (
                id TEXT PRIMARY KEY,
                product_id TEXT NOT NULL REFERENCES products(id),
                size VARCHAR(20),
                color VARCHAR(40),
                stock INTEGER NOT NULL CHECK (stock >= 0),
                sku VARCHAR(64) NOT NULL UNIQUE
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS orders (
                id TEXT PRIMARY KEY,
                order_number VARCHAR(32) NOT NULL UNIQUE,
                user_id TEXT NOT NULL,
                subtotal NUMERIC(12, 2) NOT NULL,
                shipping_cost NUMERIC(12, 2) NOT NULL,
                total_amount NUMERIC(12, 2) NOT NULL,
                shipping_address JSONB NOT NULL,
                contact_email TEXT,
                payment_method VARCHAR(16) NOT NULL,
                status VARCHAR(16) NOT NULL DEFAULT 'PENDING',
                payment_status VARCHAR(16) NOT NULL DEFAULT 'PENDING',
                stock_committed BOOLEAN NOT NULL DEFAULT FALSE,
                tracking_number TEXT,
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP NOT NULL
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS order_items (
                id BIGSERIAL PRIMARY KEY,
                order_id TEXT NOT NULL REFERENCES orders(id) ON DELETE CASCADE,
                position INTEGER NOT NULL,
                variant_id TEXT NOT NULL REFERENCES product_variants(id),
                quantity INTEGER NOT NULL CHECK (quantity >= 1),
                price NUMERIC(12, 2) NOT NULL
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS payments (
                id TEXT PRIMARY KEY,
                order_id TEXT NOT NULL UNIQUE REFERENCES orders(id) ON DELETE CASCADE,
                gateway_order_id TEXT UNIQUE,
                gateway_payment_id TEXT,
                gateway_signature TEXT,
                status VARCHAR(16) NOT NULL DEFAULT 'PENDING',
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP NOT NULL
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS cart_items (
                id BIGSERIAL PRIMARY KEY,
                user_id TEXT NOT NULL,
                variant_id TEXT NOT NULL REFERENCES product_variants(id),
                quantity INTEGER NOT NULL CHECK (quantity >= 1)
            )
            """,

            # Create indexes
            "CREATE INDEX IF NOT EXISTS idx_orders_user ON orders(user_id, created_at DESC)",
            "CREATE INDEX IF NOT EXISTS idx_orders_status ON orders(status)",
            "CREATE INDEX IF NOT EXISTS idx_order_items_order ON order_items(order_id)",
            "CREATE INDEX IF NOT EXISTS idx_cart_items_user ON cart_items(user_id)",
        ]

        async with cls.acquire() as conn:
            for migration in migrations:
                try:
                    await conn.execute(migration)
                except asyncpg.DuplicateObjectError as e:
                    logger.warning("migration_warning", error=str(e))

        logger.info("database_migrations_complete")


# =============================================================================
# ROW MAPPING
# =============================================================================

def _variant_from_row(row: asyncpg.Record) -> ProductVariant:
    return ProductVariant(**dict(row))


def _payment_from_row(row: asyncpg.Record) -> PaymentRecord:
    return PaymentRecord(**dict(row))


def _order_from_row(row: asyncpg.Record, items: List[OrderItem]) -> Order:
    data: Dict[str, Any] = dict(row)
    address = data["shipping_address"]
    data["shipping_address"] = json.loads(address) if isinstance(address, str) else address
    data["items"] = items
    return Order(**data)


# =============================================================================
# TRANSACTION
# =============================================================================

class PostgresTransaction(IStoreTransaction):
    """Transaction-scoped handle bound to one pooled connection."""

    def __init__(self, conn: asyncpg.Connection):
        self._conn = conn

    # -- catalog ---------------------------------------------------------------

    async def get_variant(self, variant_id: str, for_update: bool = False) -> Optional[ProductVariant]:
        query = "SELECT id, product_id, size, color, stock, sku FROM product_variants WHERE id = $1"
        if for_update:
            query += " FOR UPDATE"
        row = await self._conn.fetchrow(query, variant_id)
        return _variant_from_row(row) if row else None

    async def get_variants(self, variant_ids: List[str]) -> List[ProductVariant]:
        rows = await self._conn.fetch(
            "SELECT id, product_id, size, color, stock, sku FROM product_variants WHERE id = ANY($1)",
            variant_ids,
        )
        return [_variant_from_row(r) for r in rows]

    async def get_products(self, product_ids: List[str]) -> List[Product]:
        rows = await self._conn.fetch(
            "SELECT id, name, price, is_active FROM products WHERE id = ANY($1)",
            product_ids,
        )
        return [Product(**dict(r)) for r in rows]

    async def set_variant_stock(self, variant_id: str, stock: int) -> None:
        await self._conn.execute(
            "UPDATE product_variants SET stock = $2 WHERE id = $1",
            variant_id,
            stock,
        )

    # -- orders ----------------------------------------------------------------

    async def _items_for(self, order_ids: List[str]) -> Dict[str, List[OrderItem]]:
        rows = await self._conn.fetch(
            """
            SELECT order_id, variant_id, quantity, price FROM order_items
            WHERE order_id = ANY($1)
            ORDER BY order_id, position
            """,
            order_ids,
        )
        items: Dict[str, List[OrderItem]] = {oid: [] for oid in order_ids}
        for r in rows:
            items[r["order_id"]].append(
                OrderItem(variant_id=r["variant_id"], quantity=r["quantity"], price=r["price"])
            )
        return items

    async def insert_order(self, order: Order) -> Order:
        await self._conn.execute(
            """
            INSERT INTO orders
            (id, order_number, user_id, subtotal, shipping_cost, total_amount,
             shipping_address, contact_email, payment_method, status, payment_status,
             stock_committed, tracking_number, created_at, updated_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15)
            """,
            order.id,
            order.order_number,
            order.user_id,
            order.subtotal,
            order.shipping_cost,
            order.total_amount,
            json.dumps(order.shipping_address),
            order.contact_email,
            order.payment_method.value,
            order.status.value,
            order.payment_status.value,
            order.stock_committed,
            order.tracking_number,
            order.created_at,
            order.updated_at,
        )
        await self._conn.executemany(
            """
            INSERT INTO order_items (order_id, position, variant_id, quantity, price)
            VALUES ($1, $2, $3, $4, $5)
            """,
            [
                (order.id, position, item.variant_id, item.quantity, item.price)
                for position, item in enumerate(order.items)
            ],
        )
        return order

    async def get_order(self, order_id: str, for_update: bool = False) -> Optional[Order]:
        query = "SELECT * FROM orders WHERE id = $1"
        if for_update:
            query += " FOR UPDATE"
        row = await self._conn.fetchrow(query, order_id)
        if not row:
            return None
        items = await self._items_for([order_id])
        return _order_from_row(row, items[order_id])

    async def find_order(self, reference: str) -> Optional[Order]:
        row = await self._conn.fetchrow(
            "SELECT * FROM orders WHERE id = $1 OR order_number = $1 LIMIT 1", reference
        )
        if not row:
            return None
        items = await self._items_for([row["id"]])
        return _order_from_row(row, items[row["id"]])

    async def save_order(self, order: Order) -> Order:
        await self._conn.execute(
            """
            UPDATE orders
            SET status = $2, payment_status = $3, stock_committed = $4,
                tracking_number = $5, updated_at = $6
            WHERE id = $1
            """,
            order.id,
            order.status.value,
            order.payment_status.value,
            order.stock_committed,
            order.tracking_number,
            order.updated_at,
        )
        return order

    async def list_orders(
        self,
        user_id: str,
        status: Optional[OrderStatus] = None,
        offset: int = 0,
        limit: int = 10,
    ) -> Tuple[List[Order], int]:
        if status:
            rows = await self._conn.fetch(
                """
                SELECT * FROM orders WHERE user_id = $1 AND status = $2
                ORDER BY created_at DESC OFFSET $3 LIMIT $4
                """,
                user_id, status.value, offset, limit,
            )
            total = await self._conn.fetchval(
                "SELECT COUNT(*) FROM orders WHERE user_id = $1 AND status = $2",
                user_id, status.value,
            )
        else:
            rows = await self._conn.fetch(
                """
                SELECT * FROM orders WHERE user_id = $1
                ORDER BY created_at DESC OFFSET $2 LIMIT $3
                """,
                user_id, offset, limit,
            )
            total = await self._conn.fetchval(
                "SELECT COUNT(*) FROM orders WHERE user_id = $1", user_id
            )

        items = await self._items_for([r["id"] for r in rows])
        return [_order_from_row(r, items[r["id"]]) for r in rows], total

    # -- payments --------------------------------------------------------------

    async def insert_payment(self, payment: PaymentRecord) -> PaymentRecord:
        await self._conn.execute(
            """
            INSERT INTO payments
            (id, order_id, gateway_order_id, gateway_payment_id, gateway_signature,
             status, created_at, updated_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            """,
            payment.id,
            payment.order_id,
            payment.gateway_order_id,
            payment.gateway_payment_id,
            payment.gateway_signature,
            payment.status.value,
            payment.created_at,
            payment.updated_at,
        )
        return payment

    async def get_payment_by_gateway_order(
        self, gateway_order_id: str, for_update: bool = False
    ) -> Optional[PaymentRecord]:
        query = "SELECT * FROM payments WHERE gateway_order_id = $1"
        if for_update:
            query += " FOR UPDATE"
        row = await self._conn.fetchrow(query, gateway_order_id)
        return _payment_from_row(row) if row else None

    async def get_payment_by_order(self, order_id: str) -> Optional[PaymentRecord]:
        row = await self._conn.fetchrow("SELECT * FROM payments WHERE order_id = $1", order_id)
        return _payment_from_row(row) if row else None

    async def save_payment(self, payment: PaymentRecord) -> PaymentRecord:
        await self._conn.execute(
            """
            UPDATE payments
            SET gateway_payment_id = $2, gateway_signature = $3, status = $4, updated_at = $5
            WHERE id = $1
            """,
            payment.id,
            payment.gateway_payment_id,
            payment.gateway_signature,
            payment.status.value,
            payment.updated_at,
        )
        return payment

    # -- cart ------------------------------------------------------------------

    async def clear_cart(self, user_id: str) -> int:
        result = await self._conn.execute("DELETE FROM cart_items WHERE user_id = $1", user_id)
        # asyncpg returns the command tag, e.g. "DELETE 3"
        return int(result.split()[-1])


# =============================================================================
# STORE
# =============================================================================

class PostgresStore(IStore):
    """IStore over the shared asyncpg pool"""

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[PostgresTransaction]:
        try:
            async with Database.acquire() as conn:
                async with conn.transaction():
                    yield PostgresTransaction(conn)
        except (OSError, asyncpg.PostgresConnectionError, asyncpg.TooManyConnectionsError) as e:
            logger.error("database_unavailable", error=str(e))
            raise TransientError(f"database unavailable: {e}") from e
        except (asyncpg.exceptions.DeadlockDetectedError, asyncpg.exceptions.SerializationError) as e:
            # Postgres rolled the whole transaction back; the caller may retry it
            logger.warning("transaction_aborted", error=str(e), sqlstate=e.sqlstate)
            raise TransientError(f"transaction aborted, retry: {e}") from e
