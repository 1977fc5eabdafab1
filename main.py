"""Launch the Tiny Giant HTTP API with uvicorn.

Environment:
    TINY_GIANT_HOST     bind address (default 127.0.0.1)
    TINY_GIANT_PORT     port (default 8010)
    TINY_GIANT_RELOAD   1/true/yes to watch core/ and web/ for changes
"""
import os
import sys
from pathlib import Path

import uvicorn

PROJECT_ROOT = Path(__file__).parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from core.logger import get_logger, setup_logging  # noqa: E402

TRUTHY = {"1", "true", "yes", "on"}


def _server_options() -> dict:
    reload_enabled = os.getenv("TINY_GIANT_RELOAD", "0").strip().lower() in TRUTHY
    options = {
        "host": os.getenv("TINY_GIANT_HOST", "127.0.0.1"),
        "port": int(os.getenv("TINY_GIANT_PORT", "8010")),
        "reload": reload_enabled,
    }
    if reload_enabled:
        options["reload_dirs"] = [str(PROJECT_ROOT / "core"), str(PROJECT_ROOT / "web")]
    return options


def main():
    setup_logging()
    options = _server_options()
    get_logger("server").info("Starting Tiny Giant API on %s:%s", options["host"], options["port"])
    uvicorn.run("web.backend.app:app", **options)


if __name__ == "__main__":
    main()
