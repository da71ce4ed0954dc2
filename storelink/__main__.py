"""Module entrypoint to run `python -m storelink` as a connectivity check."""

from __future__ import annotations

import argparse
import logging
import sys

from . import connect, disconnect
from .backends import ConnectionBackendError
from .errors import StoreLinkError
from .manager import reset_connection_manager

LOG = logging.getLogger("storelink")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="python -m storelink",
        description="Connect to the data store configured in the environment, then disconnect.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output.")
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        connection = connect()
        LOG.info(
            "Connected to %s at %s",
            connection.options.describe(),
            connection.connected_at.isoformat(),
        )
        disconnect()
    except (StoreLinkError, ConnectionBackendError) as exc:
        LOG.error("%s", exc)
        return 1
    finally:
        reset_connection_manager()
    return 0


if __name__ == "__main__":
    sys.exit(main())
