"""Tests for application startup."""

import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from hireledger import main


def _unreachable(*args, **kwargs):
    raise OperationalError("SELECT 1", {}, Exception("connection refused"))


def _mongo_down():
    raise ConnectionError("mongodb unreachable")


class TestStartup:
    def test_schema_failure_aborts_startup(self, monkeypatch):
        monkeypatch.setattr(main, "init_schema", _unreachable)
        monkeypatch.setattr(main, "init_mongo_indexes", lambda: None)

        with pytest.raises(OperationalError):
            asyncio.run(main.startup_event())

    def test_missing_audit_indexes_do_not_block_startup(self, monkeypatch):
        created = []
        monkeypatch.setattr(main, "init_schema", lambda: created.append("schema"))
        monkeypatch.setattr(main, "init_mongo_indexes", _mongo_down)

        asyncio.run(main.startup_event())

        assert created == ["schema"]
