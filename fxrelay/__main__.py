"""Run the relay with uvicorn: `python -m fxrelay`."""

import uvicorn

from fxrelay.core.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "fxrelay.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_config=None,  # keep the JSON logging installed by create_app
    )


if __name__ == "__main__":
    main()
