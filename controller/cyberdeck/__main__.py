import uvicorn

from .config import get_settings
from .main import app


def main() -> None:
    settings = get_settings()
    uvicorn.run(app, host=settings.controller_host, port=settings.controller_port, log_config=None)


if __name__ == "__main__":
    main()
