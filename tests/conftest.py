from __future__ import annotations

import json
from typing import Any

import pytest

from careledger import files
from careledger.state import AppState
from careledger.store_adapters.local_adapter import LocalDocumentStore, LocalRecordStore

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
PDF_BYTES = b"%PDF-1.4\n" + b"0" * 64


class FakeGateway:
    """Scripted model gateway.

    Each reply is returned in order: dicts are JSON-encoded, strings are returned
    as-is, exceptions are raised and async callables are awaited.
    """

    def __init__(self, *replies: Any) -> None:
        self.replies = list(replies)
        self.calls: list[dict[str, Any]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def invoke(self, prompt: str, image: Any = None, history: str | None = None) -> str:
        self.calls.append({"prompt": prompt, "image": image, "history": history})
        if not self.replies:
            raise RuntimeError("no scripted reply left")
        reply = self.replies.pop(0)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if isinstance(reply, BaseException):
                raise reply
            if callable(reply):
                reply = await reply()
            if isinstance(reply, dict):
                return json.dumps(reply)
            return str(reply)
        finally:
            self.in_flight -= 1


@pytest.fixture(autouse=True)
def fast_retries(monkeypatch):
    monkeypatch.setattr(files, "RETRY_INITIAL_DELAY", 0.0)


@pytest.fixture
def make_state(tmp_path):
    def _make(*replies: Any, user_id: str = "user-1") -> AppState:
        return AppState(
            user_id=user_id,
            records=LocalRecordStore(tmp_path),
            documents=LocalDocumentStore(tmp_path),
            gateway=FakeGateway(*replies),
        )

    return _make
