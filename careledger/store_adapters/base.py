"""Storage interfaces shared by the Supabase and local adapters."""

from __future__ import annotations

from typing import Any, Protocol


class RecordStore(Protocol):
	"""Row-level CRUD over the relational tables, scoped by equality filters."""

	async def select(
		self,
		table: str,
		filters: dict[str, Any],
		order_by: str | None = None,
		descending: bool = False,
	) -> list[dict[str, Any]]:
		...

	async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
		...

	async def update(self, table: str, row_id: str, changes: dict[str, Any]) -> dict[str, Any] | None:
		...

	async def delete(self, table: str, row_id: str) -> None:
		...


class DocumentStore(Protocol):
	"""Object storage holding uploaded files, addressed by bucket and path."""

	async def upload(self, bucket: str, path: str, content: bytes, content_type: str) -> None:
		...

	async def get_public_url(self, bucket: str, path: str) -> str:
		...

	async def create_signed_url(
		self,
		bucket: str,
		path: str,
		ttl_seconds: int,
		download: bool = False,
	) -> str | None:
		...

	async def fetch(self, url: str) -> tuple[bytes, str]:
		...

	async def remove(self, bucket: str, paths: list[str]) -> None:
		...
