import argparse
import logging

import uvicorn

from order_sync import __version__
from order_sync.config import load_config


def main() -> None:
    config = load_config()
    server_config = config["server"]
    logging.basicConfig(level=logging.INFO, format=config["logging"]["format"])

    parser = argparse.ArgumentParser(description="Order Sync - cached order list API")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--host", default=server_config["host"], help="Bind host")
    parser.add_argument("--port", type=int, default=int(server_config["port"]), help="Bind port")
    args = parser.parse_args()

    from order_sync.order_service import app

    logging.info("order sync server: http://%s:%s", args.host, args.port)
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
