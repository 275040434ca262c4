"""Chat assistant: persisted history and context-aware replies."""

from __future__ import annotations

import logging

from careledger.config import CHAT_TABLE, CHAT_TIMEOUT
from careledger.errors import InvalidInput
from careledger.llm_adapters.gemini_adapter import NotConfigured
from careledger.models import ChatMessage, Profile
from careledger.profile_service import get_profile
from careledger.retry import with_timeout
from careledger.state import AppState

LOGGER = logging.getLogger(__name__)

HISTORY_WINDOW = 5

EMPTY_MESSAGE_REPLY = "I didn't receive your message. Could you please try again?"
UNAVAILABLE_REPLY = (
	"I'm currently unable to access the AI service. Please ensure the API key is configured correctly."
)
GENERIC_REPLY = "I'm sorry, I ran into a problem answering that. Please try again in a moment."


def build_user_context(profile: Profile | None, state: AppState) -> str:
	lines = ["User Context:"]
	if profile is not None:
		name = f"{profile.first_name or ''} {profile.last_name or ''}".strip() or "N/A"
		lines.append(f"Profile: {name}, Plan: {profile.plan_type or 'N/A'}, Member ID: {profile.member_id or 'N/A'}")

	if state.bills:
		lines.append("Hospital Bills:")
		for bill in state.bills:
			lines.append(
				f"- {bill.display_hospital_name()}: ${bill.display_amount():.2f} ({bill.status}) - Date: {bill.bill_date.isoformat()}"
			)
	else:
		lines.append("No hospital bills found.")

	if state.insurance_docs:
		lines.append("Insurance Documents:")
		for doc in state.insurance_docs:
			lines.append(f"- {doc.file_name} ({doc.file_type}) - Status: {doc.status}")
	else:
		lines.append("No insurance documents found.")

	return "\n".join(lines)


def rolling_history(messages: list[ChatMessage], window: int = HISTORY_WINDOW) -> str:
	return "\n".join(
		f"{'User' if message.sender == 'user' else 'Assistant'}: {message.content}" for message in messages[-window:]
	)


async def save_message(state: AppState, content: str, sender: str) -> ChatMessage:
	row = await state.records.insert(CHAT_TABLE, {"user_id": state.user_id, "content": content, "sender": sender})
	message = ChatMessage.model_validate(row)
	state.chat_history.append(message)
	return message


async def clear_history(state: AppState) -> int:
	removed = len(state.chat_history)
	for message in state.chat_history:
		await state.records.delete(CHAT_TABLE, message.id)
	state.chat_history = []
	LOGGER.info("Cleared %s chat messages for %s", removed, state.user_id)
	return removed


async def generate_reply(state: AppState, message: str, history: str) -> str:
	"""Ask the model for a reply; any failure becomes a fixed fallback sentence."""

	if not message or not message.strip():
		return EMPTY_MESSAGE_REPLY

	try:
		profile = await get_profile(state.records, state.user_id)
	except Exception as exc:
		LOGGER.warning("Unable to load profile for chat context: %s", exc)
		profile = None

	prompt = f"{build_user_context(profile, state)}\n\n{message.strip()}"
	try:
		return await with_timeout(
			state.gateway.invoke(prompt, history=history or None),
			CHAT_TIMEOUT,
			"Chat reply timed out",
		)
	except NotConfigured as exc:
		LOGGER.error("Chat unavailable: %s", exc)
		return UNAVAILABLE_REPLY
	except Exception as exc:
		LOGGER.error("Chat reply failed: %s", exc)
		return GENERIC_REPLY


async def send_message(state: AppState, message: str) -> tuple[ChatMessage, ChatMessage]:
	"""Persist the user message, generate a reply and persist it as the bot message."""

	if not message or not message.strip():
		raise InvalidInput("message is required")
	history = rolling_history(state.chat_history)
	user_message = await save_message(state, message.strip(), "user")
	reply = await generate_reply(state, message, history)
	bot_message = await save_message(state, reply, "bot")
	return user_message, bot_message
