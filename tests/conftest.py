from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Iterator

import pytest

from querysight.config import EngineConfig, EngineType
from querysight.core.manager import DatabaseManager


SHOP_SCHEMA = """
CREATE TABLE users (
    id INTEGER PRIMARY KEY,
    name VARCHAR(50) NOT NULL,
    email TEXT UNIQUE
);
CREATE TABLE products (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    category TEXT,
    price REAL
);
CREATE TABLE orders (
    id INTEGER PRIMARY KEY,
    user_id INTEGER,
    product_id INTEGER REFERENCES products(id),
    amount REAL,
    created_at TEXT
);
CREATE INDEX idx_orders_created_at ON orders(created_at);
CREATE TABLE customers (
    id INTEGER PRIMARY KEY,
    name TEXT
);
CREATE TABLE secrets (
    id INTEGER PRIMARY KEY,
    owner_id INTEGER,
    payload TEXT
);
"""


def seed_shop(db_path: Path) -> None:
    connection = sqlite3.connect(db_path)
    try:
        connection.executescript(SHOP_SCHEMA)
        connection.executemany(
            "INSERT INTO users (id, name, email) VALUES (?, ?, ?)",
            [(1, "Ada", "ada@example.com"), (2, "Grace", "grace@example.com")],
        )
        connection.executemany(
            "INSERT INTO products (id, name, category, price) VALUES (?, ?, ?, ?)",
            [
                (1, "Keyboard", "hardware", 49.0),
                (2, "Mouse", "hardware", 19.0),
                (3, "Monitor", "hardware", 199.0),
                (4, "Editor", "software", 79.0),
                (5, "Compiler", "software", 99.0),
            ],
        )
        connection.executemany(
            "INSERT INTO orders (id, user_id, product_id, amount, created_at) VALUES (?, ?, ?, ?, ?)",
            [
                (1, 1, 1, 49.0, "2024-01-01"),
                (2, 1, 3, 199.0, "2024-01-02"),
                (3, 2, 2, 19.0, "2024-01-03"),
            ],
        )
        connection.executemany(
            "INSERT INTO customers (id, name) VALUES (?, ?)",
            [(1, "Initech"), (2, "Globex")],
        )
        connection.execute("INSERT INTO secrets (id, owner_id, payload) VALUES (1, 1, 'hunter2')")
        connection.commit()
    finally:
        connection.close()


@pytest.fixture
def shop_db(tmp_path: Path) -> Path:
    db_path = tmp_path / "shop.db"
    seed_shop(db_path)
    return db_path


@pytest.fixture
def sqlite_config(shop_db: Path) -> EngineConfig:
    return EngineConfig(kind=EngineType.SQLITE, db_path=str(shop_db))


@pytest.fixture
def manager(sqlite_config: EngineConfig) -> Iterator[DatabaseManager]:
    db_manager = DatabaseManager()
    db_manager.initialize(sqlite_config)
    yield db_manager
    db_manager.disconnect_all()
