"""
Shared test doubles: a Supabase query-builder fake and a scripted chat gateway.
"""

import asyncio
import os
import sys
from types import SimpleNamespace
from typing import Any, Dict, List

import pytest

project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, os.path.join(project_root, "arabic_tutor_agent", "src"))


class FakeQuery:
    """Supports the select/eq/order/limit/insert/upsert chains the code uses."""

    def __init__(self, supabase: "FakeSupabase", table: str):
        self.supabase = supabase
        self.table_name = table
        self.filters = []
        self.order_by = None
        self.descending = False
        self.row_limit = None
        self.write = None

    def select(self, *args, **kwargs):
        return self

    def eq(self, column, value):
        self.filters.append((column, value))
        return self

    def order(self, column, desc=False):
        self.order_by = column
        self.descending = desc
        return self

    def limit(self, count):
        self.row_limit = count
        return self

    def insert(self, payload):
        self.write = ("insert", payload, None)
        return self

    def upsert(self, payload, on_conflict=None):
        self.write = ("upsert", payload, on_conflict)
        return self

    def execute(self):
        if self.table_name in self.supabase.failing_tables:
            raise RuntimeError(f"{self.table_name} unavailable")

        rows = self.supabase.tables.setdefault(self.table_name, [])
        if self.write is not None:
            operation, payload, on_conflict = self.write
            self.supabase.writes.append({
                "table": self.table_name,
                "operation": operation,
                "payload": payload,
                "on_conflict": on_conflict,
            })
            rows.append(dict(payload))
            return SimpleNamespace(data=[dict(payload)])

        result = [row for row in rows if all(row.get(col) == val for col, val in self.filters)]
        if self.order_by:
            result.sort(key=lambda row: row.get(self.order_by), reverse=self.descending)
        if self.row_limit is not None:
            result = result[:self.row_limit]
        return SimpleNamespace(data=result)


class FakeSupabase:
    def __init__(self, tables: Dict[str, List[dict]] = None, failing_tables=()):
        self.tables = {name: [dict(row) for row in rows] for name, rows in (tables or {}).items()}
        self.failing_tables = set(failing_tables)
        self.writes: List[dict] = []

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)


class FakeChatGateway:
    """
    Replays scripted outcomes: strings are returned, exceptions are raised.
    Every call is recorded; a delay makes each call yield to the event loop.
    """

    def __init__(self, *outcomes: Any, delay: float = 0.0):
        self.outcomes = list(outcomes)
        self.delay = delay
        self.calls: List[dict] = []

    async def complete(self, system_prompt, history, temperature=0.7, max_tokens=None, timeout_ms=None):
        self.calls.append({
            "system_prompt": system_prompt,
            "history": list(history),
            "temperature": temperature,
            "max_tokens": max_tokens,
            "timeout_ms": timeout_ms,
        })
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.outcomes.pop(0) if self.outcomes else "{}"
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def make_supabase():
    return FakeSupabase


@pytest.fixture
def make_chat_gateway():
    return FakeChatGateway
