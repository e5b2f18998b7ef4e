from __future__ import annotations

import uvicorn

from media_pipeline.config import get_settings


def main(host: str | None = None, port: int | None = None) -> None:
    s = get_settings()
    uvicorn.run(
        "media_pipeline.server:app",
        host=str(host or s.host),
        port=int(port or s.port),
        reload=False,
    )


if __name__ == "__main__":  # pragma: no cover
    main()
