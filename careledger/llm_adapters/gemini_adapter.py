"""Gemini adapter backing the AI extraction gateway."""

from __future__ import annotations

import asyncio
import base64
import logging
import os
from typing import Any

import google.generativeai as genai

from careledger.config import GEMINI_MODEL
from careledger.models import InlineImage
from careledger.prompts import CHAT_SYSTEM_PROMPT

LOGGER = logging.getLogger(__name__)


class NotConfigured(RuntimeError):
	"""Raised when the Gemini adapter cannot run due to missing setup."""


def _configure() -> None:
	api_key = os.getenv("GEMINI_API_KEY")
	if not api_key:
		raise NotConfigured("GEMINI_API_KEY is not configured")
	genai.configure(api_key=api_key)


def build_contents(prompt: str, image: InlineImage | None = None, history: str | None = None) -> list[Any]:
	"""Return the request contents for the vision or the text-only path."""

	if image is not None:
		return [
			prompt,
			{"mime_type": image.mime_type or "image/jpeg", "data": base64.b64decode(image.data)},
		]

	if history:
		full_prompt = f"{CHAT_SYSTEM_PROMPT}\n\nPrevious conversation:\n{history}\n\nUser: {prompt}"
	else:
		full_prompt = f"{CHAT_SYSTEM_PROMPT}\n\nUser: {prompt}"
	return [full_prompt]


def generate(
	prompt: str,
	image: InlineImage | None = None,
	history: str | None = None,
	*,
	model_name: str = GEMINI_MODEL,
) -> str:
	"""Run one blocking Gemini call and return its text output."""

	_configure()
	model = genai.GenerativeModel(model_name)
	reply = model.generate_content(build_contents(prompt, image=image, history=history))

	text = _extract_text(reply)
	if not text:
		raise RuntimeError("Gemini response did not contain any text output")

	return text.strip()


def _extract_text(response: Any) -> str:
	"""Best-effort extraction of plain text from a Gemini response payload."""

	if response is None:
		return ""
	try:
		if getattr(response, "text", None):
			return str(response.text)
	except ValueError:
		# ``.text`` raises when the candidate was blocked or has several parts.
		pass

	candidates = getattr(response, "candidates", None)
	if candidates:
		for candidate in candidates:
			parts = getattr(candidate, "content", None)
			if parts and getattr(parts, "parts", None):
				for part in parts.parts:
					text = getattr(part, "text", None)
					if text:
						return str(text)

	return ""


class GeminiGateway:
	"""Async gateway that runs the blocking SDK call off the event loop."""

	def __init__(self, model_name: str = GEMINI_MODEL) -> None:
		self._model_name = model_name

	async def invoke(
		self,
		prompt: str,
		image: InlineImage | None = None,
		history: str | None = None,
	) -> str:
		LOGGER.debug("Invoking %s (vision=%s)", self._model_name, image is not None)
		return await asyncio.to_thread(generate, prompt, image, history, model_name=self._model_name)


__all__ = ["GeminiGateway", "NotConfigured", "build_contents", "generate"]
