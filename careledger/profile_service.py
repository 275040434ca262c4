"""Profile storage for signed-in users.

Profiles live in the ``profiles`` table keyed by the user id. A profile is
created on first save with a generated member id and the ``Standard`` plan.
"""

from __future__ import annotations

import logging
import secrets
from datetime import date
from typing import Any

from careledger.config import PROFILES_TABLE
from careledger.errors import InvalidInput
from careledger.models import Profile, ProfileUpdateRequest
from careledger.store_adapters.base import RecordStore

LOGGER = logging.getLogger(__name__)

DEFAULT_PLAN = "Standard"


def generate_member_id(year: int | None = None) -> str:
    year = year or date.today().year
    return f"UH-{year}-{secrets.randbelow(1_000_000):06d}"


def _changes(update: ProfileUpdateRequest) -> dict[str, Any]:
    changes = update.model_dump(exclude_unset=True)
    # An empty date clears the column.
    if changes.get("date_of_birth") == "":
        changes["date_of_birth"] = None
    return changes


async def get_profile(records: RecordStore, user_id: str) -> Profile | None:
    rows = await records.select(PROFILES_TABLE, {"id": user_id})
    if not rows:
        return None
    return Profile.model_validate(rows[0])


async def create_profile(records: RecordStore, user_id: str, update: ProfileUpdateRequest) -> Profile:
    changes = _changes(update)
    row = {
        "id": user_id,
        "email": changes.get("email") or "",
        "first_name": changes.get("first_name"),
        "last_name": changes.get("last_name"),
        "phone": changes.get("phone"),
        "address": changes.get("address"),
        "date_of_birth": changes.get("date_of_birth"),
        "plan_type": changes.get("plan_type") or DEFAULT_PLAN,
        "member_id": generate_member_id(),
    }
    inserted = await records.insert(PROFILES_TABLE, row)
    LOGGER.info("Created profile for %s", user_id)
    return Profile.model_validate(inserted)


async def save_profile(records: RecordStore, user_id: str, update: ProfileUpdateRequest) -> Profile:
    """Update the supplied fields, creating the profile when none exists yet."""

    if await get_profile(records, user_id) is None:
        return await create_profile(records, user_id, update)

    changes = _changes(update)
    if not changes:
        raise InvalidInput("no profile fields supplied")
    updated = await records.update(PROFILES_TABLE, user_id, changes)
    if updated is None:
        raise KeyError(f"Unknown profile '{user_id}'")
    return Profile.model_validate(updated)
