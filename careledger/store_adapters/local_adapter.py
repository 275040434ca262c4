"""Filesystem-backed stores used for development and tests."""

from __future__ import annotations

import json
import logging
import mimetypes
import secrets
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from careledger.config import LOCAL_STORE_ROOT

LOGGER = logging.getLogger(__name__)

URL_SCHEME = "local://"


def _now() -> str:
	return datetime.now(timezone.utc).isoformat()


def _read_json_list(path: Path) -> list[dict[str, Any]]:
	if not path.exists():
		return []
	try:
		data = json.loads(path.read_text(encoding="utf-8"))
	except json.JSONDecodeError:
		LOGGER.warning("Ignoring unreadable table file %s", path)
		return []
	return [row for row in data if isinstance(row, dict)] if isinstance(data, list) else []


def _write_json(target: Path, payload: Any) -> None:
	target.parent.mkdir(parents=True, exist_ok=True)
	target.write_text(json.dumps(payload, ensure_ascii=False, indent=2, default=str), encoding="utf-8")


def _safe_relative(path: str) -> Path:
	relative = Path(path)
	if relative.is_absolute() or ".." in relative.parts:
		raise ValueError(f"invalid storage path: {path}")
	return relative


class LocalRecordStore:
	"""One JSON array per table under ``<root>/tables``; last write wins."""

	def __init__(self, root: str | Path = LOCAL_STORE_ROOT) -> None:
		self._tables = Path(root) / "tables"

	def _table_path(self, table: str) -> Path:
		return self._tables / f"{table}.json"

	async def select(
		self,
		table: str,
		filters: dict[str, Any],
		order_by: str | None = None,
		descending: bool = False,
	) -> list[dict[str, Any]]:
		rows = [
			row
			for row in _read_json_list(self._table_path(table))
			if all(row.get(column) == value for column, value in filters.items())
		]
		if order_by:
			rows.sort(key=lambda row: str(row.get(order_by) or ""), reverse=descending)
		return rows

	async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
		path = self._table_path(table)
		rows = _read_json_list(path)
		stamp = _now()
		record = {"id": str(uuid.uuid4()), "created_at": stamp, "updated_at": stamp}
		record.update(row)
		rows.append(record)
		_write_json(path, rows)
		return dict(record)

	async def update(self, table: str, row_id: str, changes: dict[str, Any]) -> dict[str, Any] | None:
		path = self._table_path(table)
		rows = _read_json_list(path)
		for row in rows:
			if row.get("id") == row_id:
				row.update(changes)
				row["updated_at"] = _now()
				_write_json(path, rows)
				return dict(row)
		return None

	async def delete(self, table: str, row_id: str) -> None:
		path = self._table_path(table)
		rows = _read_json_list(path)
		remaining = [row for row in rows if row.get("id") != row_id]
		if len(remaining) != len(rows):
			_write_json(path, remaining)


class LocalDocumentStore:
	"""Files under ``<root>/storage/<bucket>/<path>`` addressed by ``local://`` URLs."""

	def __init__(self, root: str | Path = LOCAL_STORE_ROOT) -> None:
		self._storage = Path(root) / "storage"

	def _file(self, bucket: str, path: str) -> Path:
		return self._storage / bucket / _safe_relative(path)

	async def upload(self, bucket: str, path: str, content: bytes, content_type: str) -> None:
		target = self._file(bucket, path)
		target.parent.mkdir(parents=True, exist_ok=True)
		target.write_bytes(content)
		LOGGER.info("Stored %s bytes (%s) at %s", len(content), content_type, target)

	async def get_public_url(self, bucket: str, path: str) -> str:
		return f"{URL_SCHEME}{bucket}/{path}"

	async def create_signed_url(
		self,
		bucket: str,
		path: str,
		ttl_seconds: int,
		download: bool = False,
	) -> str | None:
		if not self._file(bucket, path).exists():
			return None
		url = f"{URL_SCHEME}{bucket}/{path}?token={secrets.token_hex(8)}&expires={ttl_seconds}"
		return f"{url}&download=true" if download else url

	async def fetch(self, url: str) -> tuple[bytes, str]:
		if not url.startswith(URL_SCHEME):
			raise ValueError(f"unsupported url for local store: {url}")
		location = url[len(URL_SCHEME):].split("?", 1)[0]
		bucket, _, path = location.partition("/")
		target = self._file(bucket, path)
		if not target.exists():
			raise FileNotFoundError(f"stored file not found: {location}")
		mime, _ = mimetypes.guess_type(target.name)
		return target.read_bytes(), mime or "image/jpeg"

	async def remove(self, bucket: str, paths: list[str]) -> None:
		for path in paths:
			self._file(bucket, path).unlink(missing_ok=True)
