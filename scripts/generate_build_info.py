from __future__ import annotations

from datetime import datetime, timezone
from importlib import metadata
import json
from pathlib import Path
import subprocess


def _git_sha() -> str:
    try:
        completed = subprocess.run(
            ["git", "rev-parse", "--short", "HEAD"],
            check=True,
            capture_output=True,
            text=True,
        )
    except (OSError, subprocess.CalledProcessError):
        return "unknown"
    return completed.stdout.strip() or "unknown"


def _version() -> str:
    try:
        return metadata.version("inboxvault")
    except metadata.PackageNotFoundError:
        return "0.0.0"


def main() -> int:
    build_info = {
        "name": "inboxvault",
        "version": _version(),
        "gitSha": _git_sha(),
        "builtAt": datetime.now(timezone.utc).isoformat(),
    }
    Path("build-info.json").write_text(json.dumps(build_info, indent=2) + "\n", encoding="utf-8")
    print("Wrote build-info.json")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
