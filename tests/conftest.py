"""
Test configuration.

The environment has to be in place BEFORE rentcomp.server is imported: the
server builds its engine and payment adapter at import time.
"""
import itertools
import os
import sqlite3
import tempfile
import time

_TMP = tempfile.mkdtemp(prefix="rentcomp-test-")
DB_PATH = os.path.join(_TMP, "rentcomp.db")
_SEQ = itertools.count(1)

os.environ["DATABASE_URL"] = f"sqlite:///{DB_PATH}"
os.environ["PAYMENT_GATEWAY"] = "mock"
os.environ["MIDTRANS_SERVER_KEY"] = "test-server-key"
os.environ["FULFILLMENT_BACKEND"] = "pg"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["LOG_LEVEL"] = "WARNING"
# nothing listens here; MockPay webhook delivery fails fast
os.environ["MOCK_WEBHOOK_URL"] = "http://127.0.0.1:9/webhook/payment"

import pytest
from fastapi.testclient import TestClient

from rentcomp import server
from rentcomp.auth import issue_token

TABLES = (
    "rental_services",
    "rental_history",
    "fulfillment_gates",
    "transactions",
    "report",
    "log",
    "customer",
    "admin",
    "computer",
    "service",
)


class SyncDB:
    """Direct sqlite access for arranging and inspecting state."""

    def __init__(self, path: str) -> None:
        self.path = path

    def _connect(self):
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        return conn

    def execute(self, sql: str, params=()) -> int:
        conn = self._connect()
        try:
            cur = conn.execute(sql, params)
            conn.commit()
            return cur.lastrowid
        finally:
            conn.close()

    def rows(self, sql: str, params=()) -> list:
        conn = self._connect()
        try:
            return [dict(r) for r in conn.execute(sql, params).fetchall()]
        finally:
            conn.close()

    def scalar(self, sql: str, params=()):
        conn = self._connect()
        try:
            row = conn.execute(sql, params).fetchone()
            return None if row is None else row[0]
        finally:
            conn.close()

    def clear(self) -> None:
        conn = self._connect()
        try:
            for t in TABLES:
                conn.execute(f"DELETE FROM {t}")
            conn.commit()
        finally:
            conn.close()

    # ---- fixtures
    def add_customer(self, name="Helena", wallet=0) -> int:
        n = next(_SEQ)
        return self.execute(
            "INSERT INTO customer (name, username, email, password, wallet, "
            "created_at) VALUES (?, ?, ?, ?, ?, ?)",
            (name, f"{name.lower()}{n}", f"{name.lower()}{n}@example.com",
             "x", wallet, time.time()),
        )

    def add_admin(self, role="admin") -> int:
        n = next(_SEQ)
        return self.execute(
            "INSERT INTO admin (username, password, role, created_at) "
            "VALUES (?, ?, ?, ?)",
            (f"admin{n}", "x", role, time.time()),
        )

    def add_computer(self, rate=10_000, available=True, name="PC-01") -> int:
        return self.execute(
            "INSERT INTO computer (name, specs, hourly_rate, is_available, "
            "created_at) VALUES (?, ?, ?, ?, ?)",
            (name, "", rate, 1 if available else 0, time.time()),
        )

    def add_service(self, price=5_000, quantity=10, name="Iced Tea") -> int:
        return self.execute(
            "INSERT INTO service (name, price, quantity, created_at) "
            "VALUES (?, ?, ?, ?)",
            (name, price, quantity, time.time()),
        )

    def wallet(self, customer_id: int) -> int:
        return self.scalar(
            "SELECT wallet FROM customer WHERE id = ?", (customer_id,)
        )


@pytest.fixture(scope="session")
def client():
    with TestClient(server.app) as c:
        yield c


@pytest.fixture
def db(client):
    sdb = SyncDB(DB_PATH)
    sdb.clear()
    yield sdb
    sdb.clear()


@pytest.fixture
def mockpay():
    return server.adapter


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def customer(db):
    """(customer_id, headers) for a customer holding 100k in the wallet."""
    cid = db.add_customer(wallet=100_000)
    return cid, bearer(issue_token({"customer_id": cid}))


@pytest.fixture
def admin(db):
    aid = db.add_admin(role="admin")
    return aid, bearer(issue_token({"admin_id": aid, "role": "admin"}))


@pytest.fixture
def super_admin(db):
    aid = db.add_admin(role="super-admin")
    return aid, bearer(issue_token({"admin_id": aid, "role": "super-admin"}))
