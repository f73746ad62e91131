import argparse
import logging
import os

from aiohttp import web

from .constants import APP_NAME, SCHEMA_VERSION, VERSION

logger = logging.getLogger("ERDVault")


def main(argv=None):
    parser = argparse.ArgumentParser(prog="erdvault", description=f"{APP_NAME} diagram store server")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8765)
    parser.add_argument("--data-dir", help="directory holding erdvault.db (default: $ERDVAULT_HOME or ~/.erdvault)")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.data_dir:
        os.environ["ERDVAULT_HOME"] = os.path.abspath(args.data_dir)

    # Imported late so --data-dir is in place before the store resolves its path.
    from .api import create_app
    from .db import ERDVaultStore

    _banner = f" {APP_NAME} "
    logger.info("=" * 30 + _banner + "=" * 30)
    logger.info("Version: %s", VERSION)
    logger.info("Schema version: %s", SCHEMA_VERSION)

    app = create_app(ERDVaultStore.get())
    web.run_app(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
