"""Supabase adapter used when USE_SUPABASE is enabled."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import requests
from supabase import Client, create_client

from careledger.config import FETCH_TIMEOUT, SUPABASE_KEY, SUPABASE_URL

LOGGER = logging.getLogger(__name__)


def _client() -> Client:
	if not SUPABASE_URL or not SUPABASE_KEY:
		raise RuntimeError("SUPABASE_URL and SUPABASE_KEY must be configured")
	return create_client(SUPABASE_URL, SUPABASE_KEY)


def _content_type(headers: Any) -> str:
	raw = str(headers.get("content-type") or "").split(";")[0].strip()
	if not raw or raw == "application/octet-stream":
		return "image/jpeg"
	return raw


class SupabaseRecordStore:
	"""Relational rows stored in Supabase tables (row-level security enforced server side)."""

	def __init__(self, client: Client | None = None) -> None:
		self._client = client or _client()

	def _select(
		self,
		table: str,
		filters: dict[str, Any],
		order_by: str | None,
		descending: bool,
	) -> list[dict[str, Any]]:
		query = self._client.table(table).select("*")
		for column, value in filters.items():
			query = query.eq(column, value)
		if order_by:
			query = query.order(order_by, desc=descending)
		return list(query.execute().data or [])

	async def select(
		self,
		table: str,
		filters: dict[str, Any],
		order_by: str | None = None,
		descending: bool = False,
	) -> list[dict[str, Any]]:
		return await asyncio.to_thread(self._select, table, filters, order_by, descending)

	def _insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
		data = self._client.table(table).insert(row).execute().data
		if not data:
			raise RuntimeError(f"Insert into {table} returned no row")
		return dict(data[0])

	async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
		return await asyncio.to_thread(self._insert, table, row)

	def _update(self, table: str, row_id: str, changes: dict[str, Any]) -> dict[str, Any] | None:
		data = self._client.table(table).update(changes).eq("id", row_id).execute().data
		return dict(data[0]) if data else None

	async def update(self, table: str, row_id: str, changes: dict[str, Any]) -> dict[str, Any] | None:
		return await asyncio.to_thread(self._update, table, row_id, changes)

	def _delete(self, table: str, row_id: str) -> None:
		self._client.table(table).delete().eq("id", row_id).execute()

	async def delete(self, table: str, row_id: str) -> None:
		await asyncio.to_thread(self._delete, table, row_id)


class SupabaseDocumentStore:
	"""Uploaded files kept in Supabase Storage buckets."""

	def __init__(self, client: Client | None = None) -> None:
		self._client = client or _client()

	def _upload(self, bucket: str, path: str, content: bytes, content_type: str) -> None:
		# Retries reuse the path; an attempt that outlived its timeout may already have stored it.
		self._client.storage.from_(bucket).upload(path, content, {"content-type": content_type, "upsert": "true"})

	async def upload(self, bucket: str, path: str, content: bytes, content_type: str) -> None:
		await asyncio.to_thread(self._upload, bucket, path, content, content_type)
		LOGGER.info("Uploaded %s bytes to %s/%s", len(content), bucket, path)

	async def get_public_url(self, bucket: str, path: str) -> str:
		return str(await asyncio.to_thread(self._client.storage.from_(bucket).get_public_url, path))

	def _signed_url(self, bucket: str, path: str, ttl_seconds: int, download: bool) -> str | None:
		options = {"download": True} if download else None
		try:
			if options:
				result = self._client.storage.from_(bucket).create_signed_url(path, ttl_seconds, options)
			else:
				result = self._client.storage.from_(bucket).create_signed_url(path, ttl_seconds)
		except Exception as exc:
			LOGGER.error("Unable to sign %s/%s: %s", bucket, path, exc)
			return None
		if not isinstance(result, dict):
			return None
		return result.get("signedURL") or result.get("signedUrl")

	async def create_signed_url(
		self,
		bucket: str,
		path: str,
		ttl_seconds: int,
		download: bool = False,
	) -> str | None:
		return await asyncio.to_thread(self._signed_url, bucket, path, ttl_seconds, download)

	def _fetch(self, url: str) -> tuple[bytes, str]:
		response = requests.get(url, timeout=FETCH_TIMEOUT)
		response.raise_for_status()
		return response.content, _content_type(response.headers)

	async def fetch(self, url: str) -> tuple[bytes, str]:
		return await asyncio.to_thread(self._fetch, url)

	async def remove(self, bucket: str, paths: list[str]) -> None:
		if not paths:
			return
		await asyncio.to_thread(self._client.storage.from_(bucket).remove, paths)
		LOGGER.info("Removed %s file(s) from %s", len(paths), bucket)
