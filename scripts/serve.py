from __future__ import annotations

import sys

import uvicorn

from inboxvault.apps.api.main import create_app
from inboxvault.core.config import load_config
from inboxvault.core.errors import ConfigurationError


def main() -> int:
    # Validate before binding the port; a bad environment never serves a request.
    try:
        config = load_config()
        app = create_app(config)
    except ConfigurationError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    uvicorn.run(app, host="0.0.0.0", port=config.app.port, log_config=None)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
