from __future__ import annotations

import logging
import os

import uvicorn


def main() -> None:
    logging.basicConfig(
        level=os.getenv("TIMBOARD_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    host = os.getenv("TIMBOARD_HOST", "127.0.0.1")
    port = int(os.getenv("TIMBOARD_PORT", "8080"))
    uvicorn.run("timboard.web_admin:create_app", factory=True, host=host, port=port, reload=False)


if __name__ == "__main__":
    main()
