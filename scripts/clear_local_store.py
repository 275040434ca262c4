"""Remove the rows and files kept by the local development store."""

from __future__ import annotations

import argparse
import shutil
from pathlib import Path

from careledger.config import LOCAL_STORE_ROOT


def main() -> None:
	parser = argparse.ArgumentParser(description="Clear the local CareLedger store")
	parser.add_argument("--root", type=Path, default=Path(LOCAL_STORE_ROOT), help="Store root to clear")
	args = parser.parse_args()

	if not args.root.exists():
		raise SystemExit(f"Store root {args.root} does not exist")

	print("=== Clearing local store ===")
	for name in ("tables", "storage"):
		target = args.root / name
		if not target.exists():
			print(f"{target}: nothing to clear")
			continue
		count = sum(1 for item in target.rglob("*") if item.is_file())
		shutil.rmtree(target)
		print(f"{target}: removed {count} file(s)")

	print("Local store cleared.")


if __name__ == "__main__":
	main()
