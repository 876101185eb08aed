"""Run the relay with uvicorn: ``python -m chatrelay``."""

import uvicorn


def main() -> None:
    from .main import app, settings

    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
