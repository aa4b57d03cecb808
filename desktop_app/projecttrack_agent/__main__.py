"""Entry point for the heartbeat agent."""

from __future__ import annotations

import logging

from .api_client import ApiClient
from .config import load_config
from .heartbeat import HeartbeatLoop


def main() -> None:
    """Run the heartbeat loop in the foreground."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    config = load_config()
    client = ApiClient(config.api_base_url, config.user_id, device_id=config.device_id)
    loop = HeartbeatLoop(client, config.heartbeat_interval_seconds)
    try:
        loop.run()
    except KeyboardInterrupt:
        loop.stop()


if __name__ == "__main__":
    main()
