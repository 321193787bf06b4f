"""
Uvicorn launcher for the Gameia API (`gameia-serve`).

The realtime stream keeps connections open, so keep-alive is set above the
15 s SSE heartbeat.
"""

import logging
import os
from typing import Any, Dict

import uvicorn

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes", "on"}
_SSL_ENV = {
    "ssl_certfile": "SSL_CERTFILE",
    "ssl_keyfile": "SSL_KEYFILE",
    "ssl_ca_certs": "SSL_CA_CERTS",
    "ssl_keyfile_password": "SSL_KEYFILE_PASSWORD",
}


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in _TRUTHY


def uvicorn_options() -> Dict[str, Any]:
    options: Dict[str, Any] = {
        "host": os.getenv("HOST", "0.0.0.0"),
        "port": int(os.getenv("PORT", "8000")),
        "log_level": os.getenv("LOG_LEVEL", "info"),
        "proxy_headers": True,
        "forwarded_allow_ips": os.getenv("FORWARDED_ALLOW_IPS", "*"),
        "timeout_keep_alive": int(os.getenv("KEEP_ALIVE_SEC", "30")),
    }
    if _flag("RELOAD"):
        options["reload"] = True
    else:
        # Replay history lives in-process, so more workers means split streams.
        options["workers"] = int(os.getenv("WEB_CONCURRENCY", "1"))

    options.update({key: os.environ[env] for key, env in _SSL_ENV.items() if os.getenv(env)})
    return options


def main() -> None:
    options = uvicorn_options()
    logger.info(
        "Starting Gameia API",
        extra={"host": options["host"], "port": options["port"], "tls": "ssl_certfile" in options},
    )
    uvicorn.run("gameia.main:app", **options)


if __name__ == "__main__":
    main()
