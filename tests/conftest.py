from __future__ import annotations

import asyncio
import os
from collections import deque
from typing import List, Optional

# settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["STORE_BACKEND"] = "sql"
os.environ["LOG_FILE"] = ""
os.environ["LOG_LEVEL"] = "INFO"
os.environ["AUTH_VERIFY_MODE"] = "hs256"
os.environ["SUPABASE_JWT_SECRET"] = "test-jwt-secret"
os.environ["WEBHOOK_SECRET"] = "test-webhook-secret"

import pytest
from jose import jwt

import app.core.init_db  # noqa: F401  registers models
from app.core.db import Base, engine
from app.schemas.vendor import VendorDirectoryEntry, VendorLocationRecord
from app.services.location_store import LocationStore, StoreError


@pytest.fixture(autouse=True)
def _fresh_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


def make_token(user_id: str, role: Optional[str] = None) -> str:
    claims = {"sub": user_id}
    if role:
        claims["app_metadata"] = {"role": role}
    return jwt.encode(claims, os.environ["SUPABASE_JWT_SECRET"], algorithm="HS256")


def auth_headers(user_id: str, role: Optional[str] = None) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id, role)}"}


async def settle(rounds: int = 10) -> None:
    """Let pending callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class ManualTicker:
    """Drop-in for asyncio.sleep whose sleepers only wake on advance()."""

    def __init__(self) -> None:
        self._sleepers: deque = deque()

    async def sleep(self, delay: float) -> None:
        waiter = asyncio.get_running_loop().create_future()
        self._sleepers.append(waiter)
        await waiter

    @property
    def pending(self) -> int:
        return sum(1 for w in self._sleepers if not w.done())

    async def advance(self) -> None:
        await settle()
        while self._sleepers:
            waiter = self._sleepers.popleft()
            if not waiter.done():
                waiter.set_result(None)
        await settle()


class FakeStore(LocationStore):
    def __init__(self, directory=(), locations=()):
        self.directory: List[VendorDirectoryEntry] = list(directory)
        self.locations: List[VendorLocationRecord] = list(locations)
        self.writes: list = []
        self.reads = 0
        self.fail_writes = False
        self.fail_reads = False
        self.gate: Optional[asyncio.Event] = None
        # one gate per upcoming location read, consumed in call order
        self.read_gates: deque = deque()

    async def upsert_location(self, record: VendorLocationRecord) -> None:
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_writes:
            raise StoreError("write failed")
        self.writes.append(("upsert", record))

    async def deactivate(self, vendor_id: str) -> None:
        if self.fail_writes:
            raise StoreError("write failed")
        self.writes.append(("deactivate", vendor_id))

    async def fetch_active_locations(self) -> List[VendorLocationRecord]:
        if self.fail_reads:
            raise StoreError("read failed")
        self.reads += 1
        snapshot = [r for r in self.locations if r.is_active]
        if self.read_gates:
            await self.read_gates.popleft().wait()
        return snapshot

    async def fetch_directory(self) -> List[VendorDirectoryEntry]:
        if self.fail_reads:
            raise StoreError("read failed")
        return list(self.directory)

    async def expire_stale(self, cutoff) -> int:
        return 0
