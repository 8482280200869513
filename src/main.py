"""Nightscout sync — command-line entry point.

Run one pull against the configured site:
    NIGHTSCOUT_URL=https://my.site NIGHTSCOUT_SECRET=... python -m src.main
"""

from __future__ import annotations

import asyncio
import logging
import sys

import httpx

from src.config import get_settings
from src.nightscout.client import NightscoutAPI
from src.nightscout.errors import NightscoutError
from src.nightscout.sync.puller import RemotePuller

# ---------- Logging ----------


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )


logger = logging.getLogger("nightsync")


# ---------- Sync pass ----------


async def run_once(http_client: httpx.AsyncClient | None = None) -> int:
    """Check the connection, then pull every family once.

    Args:
        http_client: Optional httpx client (for testing).

    Returns:
        Process exit code: 0 on success, 1 if any propagating call failed.
    """
    settings = get_settings()
    api = NightscoutAPI.from_settings(settings, http_client=http_client)
    logger.info("Starting %s sync v%s against %s", settings.app_name, settings.app_version, api.url)

    try:
        await api.check_connection()
    except NightscoutError as exc:
        logger.error("Connection check failed: %s", exc)
        return 1

    snapshot = await RemotePuller(api).pull()
    logger.info(
        "Pulled %d glucose, %d carbs, %d temp targets, %d overrides, %d announcements",
        len(snapshot.glucose),
        len(snapshot.carbs),
        len(snapshot.temp_targets),
        len(snapshot.overrides),
        len(snapshot.announcements),
    )
    return 1 if snapshot.errors else 0


def main() -> None:
    configure_logging(get_settings().log_level)
    try:
        code = asyncio.run(run_once())
    except NightscoutError as exc:
        logger.error("%s", exc)
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
