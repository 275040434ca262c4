"""Verify the Gemini API key by listing the models it can reach."""

from __future__ import annotations

import os

import requests

MODELS_URL = "https://generativelanguage.googleapis.com/v1beta/models"


def main() -> None:
	api_key = os.getenv("GEMINI_API_KEY")
	if not api_key:
		raise SystemExit("Error: GEMINI_API_KEY is not set in environment variables.")

	print("Checking API Key...")
	try:
		response = requests.get(MODELS_URL, params={"key": api_key}, timeout=30)
	except requests.RequestException as exc:
		raise SystemExit(f"Fetch Error: {exc}") from exc

	if not response.ok:
		print("Error Status:", response.status_code)
		print("Error Body:", response.text)
		raise SystemExit(1)

	models = response.json().get("models") or []
	if not models:
		print("No models returned?", response.text)
		raise SystemExit(1)

	print("Total Models:", len(models))
	print("\n".join(str(model.get("name")) for model in models))


if __name__ == "__main__":
	main()
