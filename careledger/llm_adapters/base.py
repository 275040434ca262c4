"""Gateway interface the orchestrators use to reach a generative model."""

from __future__ import annotations

from typing import Protocol

from careledger.models import InlineImage


class ModelGateway(Protocol):
	"""Forward a prompt (and optionally an inline document) and return raw text.

	Implementations pick a vision-capable path when ``image`` is supplied and a
	text-only chat path otherwise. Errors (network, auth, quota) propagate.
	"""

	async def invoke(
		self,
		prompt: str,
		image: InlineImage | None = None,
		history: str | None = None,
	) -> str:
		...
