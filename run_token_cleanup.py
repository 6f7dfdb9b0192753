"""Remove expired refresh tokens and stale failed-login counters from the
shared credential store.

Run once (default) or keep looping with --loop, e.g. from cron or as a
sidecar when API workers run with the janitor disabled.
"""

import argparse
import asyncio
import logging

from authcore.config import get_settings
from authcore.repositories import build_credential_store
from authcore.services.auth_service import AuthService
from authcore.services.token_janitor import TokenJanitor

logger = logging.getLogger("authcore.cleanup")


async def run(loop: bool) -> None:
    settings = get_settings()
    settings.validate_security_settings()
    auth_service = AuthService(build_credential_store(settings), settings)
    janitor = TokenJanitor(auth_service, settings.TOKEN_CLEANUP_INTERVAL_SECONDS)

    if not loop:
        removed = await janitor.run_once()
        logger.info("Removed %d expired refresh tokens", removed)
        return

    janitor.start()
    try:
        while janitor.is_running():
            await asyncio.sleep(1)
    finally:
        await janitor.stop()


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--loop", action="store_true", help="keep running at TOKEN_CLEANUP_INTERVAL_SECONDS")
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    try:
        asyncio.run(run(args.loop))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
