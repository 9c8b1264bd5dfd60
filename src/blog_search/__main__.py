"""Entry point for the search service."""

import uvicorn

from blog_search.config import settings


def main() -> None:
    uvicorn.run(
        "blog_search.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
