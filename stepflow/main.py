"""Main FastAPI application for stepflow."""

from .factory import create_app

app = create_app()


if __name__ == "__main__":
    import uvicorn
    from .config import get_config

    uvicorn.run(app, **get_config().get_uvicorn_config())
