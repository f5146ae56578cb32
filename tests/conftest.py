"""Shared pytest fixtures for dbclone tests."""

import logging
from collections.abc import Callable, Iterator
from datetime import datetime, timedelta
from typing import Any

import pytest

from dbclone.adapters.sqlite import SQLiteAdapter
from dbclone.config import RetentionPolicy
from dbclone.constants import CUTOFF_FORMAT
from dbclone.core.compiler import KeepSetCompiler
from dbclone.core.keepset import KeepSet
from dbclone.models import Column, ForeignKey, SchemaGraph, Table

NOW = datetime(2024, 6, 15, 12, 0, 0)


def days_ago(days: float) -> str:
    """Timestamp ``days`` before NOW, formatted the way the fixtures store it."""
    return (NOW - timedelta(days=days)).strftime(CUTOFF_FORMAT)


def make_table(name: str, *columns: str, pk: tuple[str, ...] = ("id",)) -> Table:
    """Build a Table whose columns are all INTEGER except those named *_at."""
    cols = tuple(
        Column(
            name=col,
            data_type="TEXT" if col.endswith("_at") else "INTEGER",
            nullable=col not in pk,
            is_primary_key=col in pk,
        )
        for col in columns
    )
    return Table(name=name, columns=cols, primary_key=pk, schema="main")


def make_fk(source: str, column: str, target: str, target_column: str = "id") -> ForeignKey:
    return ForeignKey(
        name=f"fk_{source}_{column}",
        source_table=source,
        source_column=column,
        target_table=target,
        target_column=target_column,
    )


@pytest.fixture(autouse=True)
def reset_logging() -> Iterator[None]:
    """Undo setup_logging() calls made by CLI tests so caplog keeps working."""
    yield
    logger = logging.getLogger("dbclone")
    logger.handlers.clear()
    logger.propagate = True


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def policy() -> Callable[..., RetentionPolicy]:
    """Factory: policy(users={"max_rows": 1}, logs={...})."""

    def build(**limits: dict[str, Any]) -> RetentionPolicy:
        return RetentionPolicy.from_mapping(limits, strict=True)

    return build


@pytest.fixture
def blog_graph() -> SchemaGraph:
    """
    users <- posts <- comments, comments.user_id -> users, users.manager_id -> users.

    posts.editor_id is a second, nullable edge to users.
    """
    return SchemaGraph(
        tables={
            "users": make_table("users", "id", "manager_id", "created_at"),
            "posts": make_table("posts", "id", "user_id", "editor_id", "created_at"),
            "comments": make_table("comments", "id", "post_id", "user_id", "created_at"),
            "tags": make_table("tags", "id", "name"),
        },
        edges=[
            make_fk("posts", "user_id", "users"),
            make_fk("posts", "editor_id", "users"),
            make_fk("comments", "post_id", "posts"),
            make_fk("comments", "user_id", "users"),
            make_fk("users", "manager_id", "users"),
        ],
    )


@pytest.fixture
def cyclic_graph() -> SchemaGraph:
    """teams.owner_id -> members, members.team_id -> teams."""
    return SchemaGraph(
        tables={
            "teams": make_table("teams", "id", "owner_id"),
            "members": make_table("members", "id", "team_id", "joined_at"),
        },
        edges=[
            make_fk("teams", "owner_id", "members"),
            make_fk("members", "team_id", "teams"),
        ],
    )


@pytest.fixture
def sqlite_adapter() -> Iterator[SQLiteAdapter]:
    """Connected in-memory SQLite adapter."""
    adapter = SQLiteAdapter()
    adapter.connect("sqlite:///:memory:")
    yield adapter
    adapter.close()


def create_schema(adapter: SQLiteAdapter, *statements: str) -> None:
    for statement in statements:
        adapter.execute(statement)


def insert_rows(adapter: SQLiteAdapter, table: str, rows: list[dict[str, Any]]) -> None:
    for row in rows:
        columns = ", ".join(f'"{col}"' for col in row)
        placeholders = ", ".join("?" for _ in row)
        adapter.execute(
            f'INSERT INTO "{table}" ({columns}) VALUES ({placeholders})', tuple(row.values())
        )


@pytest.fixture
def logs_db(sqlite_adapter: SQLiteAdapter) -> SQLiteAdapter:
    """
    users(id 1..3) <- logs(user_id, created_at).

    log 1 -> user 1, 1 day old; log 2 -> user 2, 10 days old.
    """
    create_schema(
        sqlite_adapter,
        'CREATE TABLE "users" ("id" INTEGER PRIMARY KEY, "name" TEXT)',
        'CREATE TABLE "logs" ("id" INTEGER PRIMARY KEY, '
        '"user_id" INTEGER REFERENCES "users"("id"), "created_at" TEXT, "message" TEXT)',
    )
    insert_rows(
        sqlite_adapter,
        "users",
        [{"id": 1, "name": "ana"}, {"id": 2, "name": "bo"}, {"id": 3, "name": "cy"}],
    )
    insert_rows(
        sqlite_adapter,
        "logs",
        [
            {"id": 1, "user_id": 1, "created_at": days_ago(1), "message": "login"},
            {"id": 2, "user_id": 2, "created_at": days_ago(10), "message": "login"},
        ],
    )
    return sqlite_adapter


def populate_shop(sqlite_adapter: SQLiteAdapter) -> None:
    """
    customers <- orders <- order_items -> products.

    Five customers, two orders each (orders 1..10, order n belongs to
    customer (n + 1) // 2), two items per order; order_items has no limit of
    its own in most tests.
    """
    create_schema(
        sqlite_adapter,
        'CREATE TABLE "customers" ("id" INTEGER PRIMARY KEY, "created_at" TEXT)',
        'CREATE TABLE "products" ("id" INTEGER PRIMARY KEY, "sku" TEXT)',
        'CREATE TABLE "orders" ("id" INTEGER PRIMARY KEY, '
        '"customer_id" INTEGER NOT NULL REFERENCES "customers"("id"), "created_at" TEXT)',
        'CREATE TABLE "order_items" ("id" INTEGER PRIMARY KEY, '
        '"order_id" INTEGER NOT NULL REFERENCES "orders"("id"), '
        '"product_id" INTEGER REFERENCES "products"("id"), "quantity" INTEGER)',
    )
    insert_rows(
        sqlite_adapter,
        "customers",
        [{"id": i, "created_at": days_ago(50 - i)} for i in range(1, 6)],
    )
    insert_rows(sqlite_adapter, "products", [{"id": i, "sku": f"SKU-{i}"} for i in range(1, 4)])
    insert_rows(
        sqlite_adapter,
        "orders",
        [
            {"id": i, "customer_id": (i + 1) // 2, "created_at": days_ago(11 - i)}
            for i in range(1, 11)
        ],
    )
    insert_rows(
        sqlite_adapter,
        "order_items",
        [
            {"id": i, "order_id": (i + 1) // 2, "product_id": i % 3 + 1, "quantity": 1}
            for i in range(1, 21)
        ],
    )


@pytest.fixture
def shop_db(sqlite_adapter: SQLiteAdapter) -> SQLiteAdapter:
    """In-memory shop database (see populate_shop)."""
    populate_shop(sqlite_adapter)
    return sqlite_adapter


@pytest.fixture
def shop_url(tmp_path) -> str:
    """URL of a file-backed shop database."""
    path = tmp_path / "shop.db"
    url = f"sqlite:///{path}"
    adapter = SQLiteAdapter()
    adapter.connect(url)
    try:
        populate_shop(adapter)
    finally:
        adapter.close()
    return url


@pytest.fixture
def keep_values() -> Callable[[SQLiteAdapter, KeepSet], set[Any]]:
    """Evaluate a keep-set against the source tables."""

    def evaluate(adapter: SQLiteAdapter, keep_set: KeepSet) -> set[Any]:
        compiled = KeepSetCompiler(adapter).compile(keep_set)
        return set(adapter.fetch_column(compiled.sql, compiled.params))

    return evaluate
