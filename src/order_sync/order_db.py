"""MySQL-backed remote order store: owner-filtered, remotely sorted pages."""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pymysql
from pymysql.cursors import DictCursor

from order_sync.config import load_config
from order_sync.errors import FetchError, RemoteStoreError
from order_sync.schemas import Order, OrderCreate, SortKey

# id breaks ties so repeated page reads see a stable order
ORDER_BY: dict[SortKey, str] = {
    SortKey.DATE: "created_at DESC, id DESC",
    SortKey.AMOUNT: "quantity * unit_price DESC, id DESC",
}


def _mysql_config() -> dict:
    mysql = load_config()["mysql"]
    return {
        "host": mysql["host"],
        "port": int(mysql["port"]),
        "user": mysql["user"],
        "password": mysql["password"],
        "database": mysql["database"],
        "charset": mysql.get("charset", "utf8mb4"),
        "connect_timeout": int(mysql.get("connect_timeout", 10)),
        "cursorclass": DictCursor,
    }


def _conn(use_db: bool = True):
    kwargs = {**_mysql_config()}
    if not use_db:
        kwargs.pop("database", None)
    return pymysql.connect(**kwargs)


def init_db() -> None:
    db_name = _mysql_config()["database"]
    conn = _conn(use_db=False)
    try:
        with conn.cursor() as cursor:
            cursor.execute(
                f"CREATE DATABASE IF NOT EXISTS `{db_name}` CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci"
            )
        conn.commit()
    finally:
        conn.close()

    conn = _conn(use_db=True)
    try:
        with conn.cursor() as cursor:
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS orders (
                    id VARCHAR(36) PRIMARY KEY,
                    user_id VARCHAR(64) NOT NULL,
                    store VARCHAR(255) NOT NULL,
                    unit_price DECIMAL(12, 2) NOT NULL,
                    quantity INT NOT NULL,
                    status VARCHAR(32) NOT NULL,
                    created_at TIMESTAMP(6) NOT NULL DEFAULT CURRENT_TIMESTAMP(6),
                    INDEX idx_orders_user_created (user_id, created_at)
                )
                """
            )
        conn.commit()
    finally:
        conn.close()


def _map_row_to_order(row: dict) -> Order:
    return Order(
        id=row["id"],
        user_id=row["user_id"],
        store=row["store"],
        unit_price=Decimal(row["unit_price"]),
        quantity=int(row["quantity"]),
        status=row["status"],
        created_at=row["created_at"],
    )


def fetch_page(identity: str, offset: int, limit: int, sort_key: SortKey) -> list[Order]:
    """Read one page of the caller's orders. Fewer than ``limit`` rows means end of data."""
    order_by = ORDER_BY[SortKey(sort_key)]
    try:
        conn = _conn()
        try:
            with conn.cursor() as cursor:
                cursor.execute(
                    f"SELECT id, user_id, store, unit_price, quantity, status, created_at "
                    f"FROM orders WHERE user_id = %s ORDER BY {order_by} LIMIT %s OFFSET %s",
                    (identity, int(limit), int(offset)),
                )
                rows = cursor.fetchall()
        finally:
            conn.close()
    except pymysql.MySQLError as exc:
        raise FetchError(f"order page fetch failed: {exc}") from exc
    return [_map_row_to_order(row) for row in rows]


def create_order(identity: str, request: OrderCreate) -> Order:
    order = Order(
        id=str(uuid4()),
        user_id=identity,
        store=request.store,
        unit_price=request.unit_price,
        quantity=request.quantity,
        status=request.status,
        created_at=datetime.now(timezone.utc),
    )
    try:
        conn = _conn()
        try:
            with conn.cursor() as cursor:
                cursor.execute(
                    """
                    INSERT INTO orders (id, user_id, store, unit_price, quantity, status, created_at)
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        order.id,
                        order.user_id,
                        order.store,
                        order.unit_price,
                        order.quantity,
                        order.status,
                        order.created_at.replace(tzinfo=None),
                    ),
                )
            conn.commit()
        finally:
            conn.close()
    except pymysql.MySQLError as exc:
        raise RemoteStoreError(f"order insert failed: {exc}") from exc
    return order


def clear_orders(identity: str | None = None) -> int:
    conn = _conn()
    try:
        with conn.cursor() as cursor:
            if identity is None:
                cursor.execute("DELETE FROM orders")
            else:
                cursor.execute("DELETE FROM orders WHERE user_id = %s", (identity,))
            affected = cursor.rowcount
        conn.commit()
        return affected
    finally:
        conn.close()
