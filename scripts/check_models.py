"""Probe candidate Gemini models and report the first one that answers."""

from __future__ import annotations

import argparse
import os

import google.generativeai as genai

from careledger.config import GEMINI_MODEL

CANDIDATES = [
	GEMINI_MODEL,
	"gemini-2.5-flash",
	"gemini-2.0-flash",
	"gemini-1.5-flash",
	"gemini-1.5-pro",
]


def probe(model_name: str) -> bool:
	try:
		reply = genai.GenerativeModel(model_name).generate_content("Hello")
		_ = reply.text
	except Exception as exc:
		print(f"FAILED: {model_name}")
		print(f"Error: {exc}")
		return False
	print(f"SUCCESS! Model {model_name} works.")
	return True


def main() -> None:
	parser = argparse.ArgumentParser(description="Find a working Gemini model for the configured API key")
	parser.add_argument("models", nargs="*", help="Model names to try instead of the defaults")
	args = parser.parse_args()

	api_key = os.getenv("GEMINI_API_KEY")
	if not api_key:
		raise SystemExit("Error: GEMINI_API_KEY is not set in environment variables.")
	genai.configure(api_key=api_key)

	candidates = list(dict.fromkeys(args.models or CANDIDATES))
	print(f"Probing {len(candidates)} model(s)...")
	for model_name in candidates:
		print(f"\nTesting: {model_name}")
		if probe(model_name):
			return

	raise SystemExit("\nAll candidates failed.")


if __name__ == "__main__":
	main()
