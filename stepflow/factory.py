"""Application factory for creating FastAPI instances."""

from typing import Optional
from fastapi import FastAPI
from contextlib import asynccontextmanager

from .config import AppConfig, get_config
from .core.collaborators import (
    FILE_STORE,
    HTTP_CLIENT,
    WORKFLOW_LOADER,
    CollaboratorRegistry,
    LocalFileStore,
    RequestsHttpClient,
)
from .core.handler_registry import HandlerRegistry, build_default_registry
from .core.history import HistoryStore
from .core.interpreter import WorkflowInterpreter
from .core.loader import FileStoreWorkflowLoader
from .core.logging import setup_logging, get_logger
from .core.runs import RunManager
from .api.endpoints import router, init_dependencies


class ApplicationState:
    """Container for application state and components."""

    def __init__(self):
        self.config: Optional[AppConfig] = None
        self.handler_registry: Optional[HandlerRegistry] = None
        self.collaborators: Optional[CollaboratorRegistry] = None
        self.history_store: Optional[HistoryStore] = None
        self.interpreter: Optional[WorkflowInterpreter] = None
        self.run_manager: Optional[RunManager] = None


def build_collaborators(config: AppConfig, registry: Optional[CollaboratorRegistry] = None) -> CollaboratorRegistry:
    """Register the default local collaborators.

    The file store and workflow loader work on ``config.workflows_dir``; the
    HTTP client is created lazily. Command runners, remote tool clients and
    prompters have no default and must be registered by the embedding
    application.
    """
    registry = registry or CollaboratorRegistry()
    file_store = LocalFileStore(config.workflows_dir)

    if not registry.has(FILE_STORE):
        registry.register(FILE_STORE, instance=file_store)
    if not registry.has(WORKFLOW_LOADER):
        registry.register(
            WORKFLOW_LOADER,
            instance=FileStoreWorkflowLoader(
                registry.get(FILE_STORE), allow_back_edges=config.allow_back_edges
            )
        )
    if not registry.has(HTTP_CLIENT):
        registry.register(HTTP_CLIENT, factory=lambda: RequestsHttpClient(
            timeout=config.http_timeout, retry_attempts=config.http_retry_attempts
        ))
    return registry


def build_history_store(config: AppConfig) -> HistoryStore:
    """Create the SQL history store, creating its tables."""
    from .storage.database import configure_database, create_tables
    from .storage.history_store import SqlHistoryStore

    configure_database(config.database_url, echo=config.database_echo)
    create_tables()
    return SqlHistoryStore(retry_attempts=config.history_retry_attempts)


def create_app(
    config: Optional[AppConfig] = None,
    history_store: Optional[HistoryStore] = None,
    collaborators: Optional[CollaboratorRegistry] = None
) -> FastAPI:
    """
    Create a FastAPI application.

    Args:
        config: Application configuration; defaults to the global config
        history_store: History store; defaults to a SQL store on ``config.database_url``
        collaborators: Collaborator registry; local defaults are added to it

    Returns:
        Configured FastAPI application
    """
    config = config or get_config()
    state = ApplicationState()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        setup_logging(
            level=config.log_level,
            log_file=config.log_file,
            log_format=config.log_format,
            structured=config.log_structured,
            max_size=config.log_max_size,
            backup_count=config.log_backup_count
        )
        logger = get_logger(__name__)
        logger.info(f"Starting {config.app_name} {config.app_version}")

        state.config = config
        state.history_store = history_store or build_history_store(config)
        state.handler_registry = build_default_registry()
        state.collaborators = build_collaborators(config, collaborators)
        state.interpreter = WorkflowInterpreter(
            handlers=state.handler_registry,
            collaborators=state.collaborators,
            history=state.history_store,
            config=config
        )
        state.run_manager = RunManager(state.interpreter)

        init_dependencies(
            run_manager=state.run_manager,
            history_store=state.history_store,
            handler_registry=state.handler_registry,
            allow_back_edges=config.allow_back_edges
        )
        app.state.stepflow = state
        logger.info("Core components initialized")

        yield

        logger.info(f"Shutting down {config.app_name}")
        try:
            await state.run_manager.shutdown()
        except Exception as e:
            logger.error(f"Error during run manager shutdown: {str(e)}")
        await state.collaborators.dispose()

    app = FastAPI(
        title="stepflow",
        description="Workflow engine for node graphs embedded in markdown documents",
        version=config.app_version,
        lifespan=lifespan
    )
    app.include_router(router)

    @app.get("/")
    async def root():
        """Root endpoint for health check."""
        return {"message": f"{config.app_name} is running"}

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        active = len(state.run_manager.get_active_runs()) if state.run_manager else 0
        return {"status": "healthy", "service": config.app_name, "active_runs": active}

    return app
