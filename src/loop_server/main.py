"""`agent-loop-server` console script: serve the workflow API with uvicorn.

Bind address, model and checkpoint backend all come from ``AGENT_LOOP_*``
settings; set ``AGENT_LOOP_MOCK_LLM=1`` to serve every workflow offline.
"""

from __future__ import annotations

import uvicorn

from agent_loop.logging import get_logger
from agent_loop.settings import get_settings

logger = get_logger("loop_server.main")


def main() -> None:
    settings = get_settings()
    logger.info(
        "loop_server_starting",
        extra={
            "extra": {
                "host": settings.host,
                "port": settings.port,
                "checkpoint_backend": settings.checkpoint_backend,
            }
        },
    )
    uvicorn.run("loop_server.app:app", host=settings.host, port=settings.port, reload=False)


if __name__ == "__main__":
    main()
