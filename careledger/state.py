"""Per-user application state and the registry that owns its lifecycle."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from fastapi import HTTPException

from careledger.config import BILLS_TABLE, CHAT_TABLE, INSURANCE_TABLE
from careledger.llm_adapters.base import ModelGateway
from careledger.models import Bill, ChatMessage, InsuranceDocument
from careledger.store_adapters.base import DocumentStore, RecordStore

LOGGER = logging.getLogger(__name__)


@dataclass
class AppState:
    """Everything the orchestrators need for one signed-in user.

    Created at session start, dropped at session end. The cached lists mirror
    the remote rows and are kept current by the services after each write.
    """

    user_id: str
    records: RecordStore
    documents: DocumentStore
    gateway: ModelGateway
    bills: list[Bill] = field(default_factory=list)
    insurance_docs: list[InsuranceDocument] = field(default_factory=list)
    chat_history: list[ChatMessage] = field(default_factory=list)

    async def load(self) -> None:
        """Refresh the cached rows from the record store."""

        owner = {"user_id": self.user_id}
        bill_rows = await self.records.select(BILLS_TABLE, owner, order_by="created_at", descending=True)
        doc_rows = await self.records.select(INSURANCE_TABLE, owner, order_by="created_at", descending=True)
        chat_rows = await self.records.select(CHAT_TABLE, owner, order_by="created_at")
        self.bills = [Bill.model_validate(row) for row in bill_rows]
        self.insurance_docs = [InsuranceDocument.model_validate(row) for row in doc_rows]
        self.chat_history = [ChatMessage.model_validate(row) for row in chat_rows]
        LOGGER.info(
            "Loaded %s bills, %s insurance documents, %s chat messages for %s",
            len(self.bills),
            len(self.insurance_docs),
            len(self.chat_history),
            self.user_id,
        )

    def find_bill(self, bill_id: str) -> Bill:
        for bill in self.bills:
            if bill.id == bill_id:
                return bill
        raise KeyError(f"Unknown bill id '{bill_id}'")

    def put_bill(self, bill: Bill) -> None:
        for index, existing in enumerate(self.bills):
            if existing.id == bill.id:
                self.bills[index] = bill
                return
        self.bills.insert(0, bill)

    def drop_bill(self, bill_id: str) -> None:
        self.bills = [bill for bill in self.bills if bill.id != bill_id]

    def find_document(self, doc_id: str) -> InsuranceDocument:
        for doc in self.insurance_docs:
            if doc.id == doc_id:
                return doc
        raise KeyError(f"Unknown insurance document id '{doc_id}'")

    def put_document(self, doc: InsuranceDocument) -> None:
        for index, existing in enumerate(self.insurance_docs):
            if existing.id == doc.id:
                self.insurance_docs[index] = doc
                return
        self.insurance_docs.insert(0, doc)

    def drop_document(self, doc_id: str) -> None:
        self.insurance_docs = [doc for doc in self.insurance_docs if doc.id != doc_id]


StateFactory = Callable[[str], AppState]


class SessionRegistry:
    """Maps user ids to their live ``AppState``."""

    def __init__(self, factory: StateFactory) -> None:
        self._factory = factory
        self._states: dict[str, AppState] = {}

    async def start(self, user_id: str) -> AppState:
        user_id = str(user_id or "").strip()
        if not user_id:
            raise HTTPException(status_code=400, detail="user_id is required")
        state = self._factory(user_id)
        await state.load()
        self._states[user_id] = state
        return state

    def get(self, user_id: str | None) -> AppState:
        state = self._states.get(str(user_id or "").strip())
        if state is None:
            raise HTTPException(status_code=400, detail="No session. Call /session/start first.")
        return state

    def end(self, user_id: str) -> bool:
        return self._states.pop(str(user_id or "").strip(), None) is not None
