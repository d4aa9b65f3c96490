"""
StreamGate entrypoint
Serves the upstream data gateway and the media stream proxy
"""

import uvicorn
from loguru import logger

from streamgate.app import create_app
from streamgate.log_config import setup_logging
from streamgate.settings import global_settings


def main() -> None:
    setup_logging(global_settings.log_level)
    logger.info(
        f"Starting StreamGate on {global_settings.host}:{global_settings.port} "
        f"({global_settings.environment})"
    )
    uvicorn.run(
        create_app(global_settings),
        host=global_settings.host,
        port=global_settings.port,
        log_level=global_settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
