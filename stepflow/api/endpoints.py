"""FastAPI REST endpoints for the workflow engine."""

from typing import Any, Dict, List, Optional
from fastapi import APIRouter, HTTPException, Depends, Query, status
from pydantic import BaseModel, Field

from ..core.exceptions import (
    MalformedDefinition,
    StorageError,
    WorkflowEngineError,
    create_error_response
)
from ..core.handler_registry import HandlerRegistry
from ..core.history import HistoryStore
from ..core.logging import get_logger
from ..core.parser import WorkflowOption, list_workflow_options, parse
from ..core.runs import RunManager
from ..models.core import ExecutionLog, ExecutionRecord, ExecutionStatus, VariableValue, Workflow

logger = get_logger(__name__)

# Create router
router = APIRouter(prefix="/api/v1", tags=["workflow"])

# Global instances (initialized in main.py)
_run_manager: Optional[RunManager] = None
_history_store: Optional[HistoryStore] = None
_handler_registry: Optional[HandlerRegistry] = None
_allow_back_edges: bool = False


def init_dependencies(
    run_manager: RunManager,
    history_store: HistoryStore,
    handler_registry: HandlerRegistry,
    allow_back_edges: bool = False
):
    """Initialize the global dependencies."""
    global _run_manager, _history_store, _handler_registry, _allow_back_edges
    _run_manager = run_manager
    _history_store = history_store
    _handler_registry = handler_registry
    _allow_back_edges = allow_back_edges


def get_run_manager() -> RunManager:
    """Dependency to get the run manager."""
    if _run_manager is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Run manager not initialized"
        )
    return _run_manager


def get_history_store() -> HistoryStore:
    """Dependency to get the history store."""
    if _history_store is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="History store not initialized"
        )
    return _history_store


def get_handler_registry() -> HandlerRegistry:
    """Dependency to get the handler registry."""
    if _handler_registry is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Handler registry not initialized"
        )
    return _handler_registry


# Request/Response models
class WorkflowSource(BaseModel):
    """A workflow given as a markdown document or as a list of node records."""
    content: Optional[str] = Field(None, description="Markdown document or YAML text")
    nodes: Optional[List[Dict[str, Any]]] = Field(None, description="Node records")
    name: Optional[str] = Field(None, description="Workflow block name inside the document")
    index: Optional[int] = Field(None, description="Workflow block index inside the document")


class ParseWorkflowResponse(BaseModel):
    """Response model for workflow parsing."""
    name: Optional[str] = Field(None, description="Workflow name")
    start_node: Optional[str] = Field(None, description="ID of the first node")
    nodes: List[Dict[str, Any]] = Field(default_factory=list, description="Parsed nodes")
    edges: List[Dict[str, Any]] = Field(default_factory=list, description="Parsed edges")


class WorkflowOptionsRequest(BaseModel):
    """Request model for listing the workflow blocks of a document."""
    content: str = Field(..., description="Markdown document")


class RunWorkflowRequest(WorkflowSource):
    """Request model for running a workflow."""
    variables: Dict[str, VariableValue] = Field(default_factory=dict, description="Initial variables")
    workflow_path: str = Field("<inline>", description="Path recorded in history")
    workflow_name: Optional[str] = Field(None, description="Name recorded in history")


class RunWorkflowResponse(BaseModel):
    """Response model for workflow execution."""
    run_id: str = Field(..., description="Run identifier, also the history record id")
    message: str = Field(..., description="Success message")
    status: str = Field(..., description="Initial execution status")


class RunStatusResponse(BaseModel):
    """Status of a run, with its history record once persisted."""
    run_id: str = Field(..., description="Run identifier")
    status: ExecutionStatus = Field(..., description="Execution status")
    error: Optional[str] = Field(None, description="Error message for failed runs")
    variables: Dict[str, VariableValue] = Field(default_factory=dict, description="Final variables")
    logs: List[ExecutionLog] = Field(default_factory=list, description="Log entries of this server's run")
    record: Optional[ExecutionRecord] = Field(None, description="Persisted history record")


def _error(status_code: int, error: WorkflowEngineError) -> HTTPException:
    return HTTPException(status_code=status_code, detail=create_error_response(error))


def _internal_error(message: str, e: Exception) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={
            "error": "InternalError",
            "message": message,
            "details": {"original_error": str(e)}
        }
    )


def _parse_source(source: WorkflowSource) -> Workflow:
    if source.nodes is not None:
        return parse(source.nodes, allow_back_edges=_allow_back_edges)
    if source.content is not None:
        return parse(source.content, name=source.name, index=source.index, allow_back_edges=_allow_back_edges)
    raise MalformedDefinition("Either 'content' or 'nodes' is required")


# Endpoints

@router.post(
    "/workflows/parse",
    response_model=ParseWorkflowResponse,
    summary="Parse a workflow definition",
    description="Parse a markdown, YAML or node-list workflow definition into its graph"
)
async def parse_workflow(request: WorkflowSource) -> ParseWorkflowResponse:
    """
    Parse a workflow definition.

    Args:
        request: Workflow source

    Returns:
        The parsed nodes, edges and start node

    Raises:
        HTTPException: 400 if the definition is malformed
    """
    try:
        workflow = _parse_source(request)
    except MalformedDefinition as e:
        logger.warning(f"Workflow definition rejected: {e.message}")
        raise _error(status.HTTP_400_BAD_REQUEST, e)

    data = workflow.model_dump(mode="json", exclude={"nodes": {"__all__": {"config"}}})
    return ParseWorkflowResponse(
        name=workflow.name,
        start_node=workflow.start_node,
        nodes=list(data["nodes"].values()),
        edges=data["edges"]
    )


@router.post(
    "/workflows/options",
    response_model=List[WorkflowOption],
    summary="List workflow blocks",
    description="List the workflow code blocks of a markdown document"
)
async def workflow_options(request: WorkflowOptionsRequest) -> List[WorkflowOption]:
    try:
        return list_workflow_options(request.content)
    except MalformedDefinition as e:
        raise _error(status.HTTP_400_BAD_REQUEST, e)


@router.post(
    "/runs",
    response_model=RunWorkflowResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Execute a workflow",
    description="Start execution of a workflow definition with the provided variables"
)
async def run_workflow(
    request: RunWorkflowRequest,
    run_manager: RunManager = Depends(get_run_manager)
) -> RunWorkflowResponse:
    """
    Start a workflow run in the background.

    Args:
        request: Workflow source, initial variables and history labels
        run_manager: Run manager dependency

    Returns:
        Response containing the run ID and initial status

    Raises:
        HTTPException: 400 if the definition is malformed
    """
    try:
        workflow = _parse_source(request)
    except MalformedDefinition as e:
        logger.warning(f"Workflow definition rejected: {e.message}")
        raise _error(status.HTTP_400_BAD_REQUEST, e)

    run_id = run_manager.start(
        workflow,
        request.variables,
        workflow_path=request.workflow_path,
        workflow_name=request.workflow_name or workflow.name
    )
    return RunWorkflowResponse(
        run_id=run_id,
        message="Workflow execution started successfully",
        status=ExecutionStatus.RUNNING.value
    )


@router.get(
    "/runs/{run_id}",
    response_model=RunStatusResponse,
    summary="Get workflow run status"
)
async def get_run(
    run_id: str,
    run_manager: RunManager = Depends(get_run_manager),
    history_store: HistoryStore = Depends(get_history_store)
) -> RunStatusResponse:
    """
    Get the status of a run.

    Runs started by this server report their live state; older runs are
    answered from execution history.
    """
    try:
        record = history_store.get_record(run_id)
    except StorageError as e:
        logger.error(f"Storage error loading run {run_id}: {e.message}")
        raise _error(status.HTTP_500_INTERNAL_SERVER_ERROR, e)

    state = run_manager.get_state(run_id)
    if state is None and record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "error": "RunNotFound",
                "message": f"Run with ID '{run_id}' not found",
                "details": {"run_id": run_id}
            }
        )

    if state is None:
        return RunStatusResponse(
            run_id=run_id,
            status=record.status,
            variables=record.variables_snapshot or {},
            record=record
        )

    return RunStatusResponse(
        run_id=run_id,
        status=state.status,
        error=state.error,
        variables=state.variables,
        logs=state.logs,
        record=record
    )


@router.post(
    "/runs/{run_id}/cancel",
    summary="Cancel a workflow run"
)
async def cancel_run(
    run_id: str,
    run_manager: RunManager = Depends(get_run_manager)
) -> Dict[str, Any]:
    if not run_manager.cancel(run_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "error": "RunNotActive",
                "message": f"Run '{run_id}' is not active",
                "details": {"run_id": run_id}
            }
        )
    return {"run_id": run_id, "message": "Cancellation requested"}


@router.get(
    "/history",
    response_model=List[ExecutionRecord],
    summary="List execution history",
    description="List execution records, newest first"
)
async def list_history(
    workflow_path: Optional[str] = Query(None, description="Only records of this workflow"),
    history_store: HistoryStore = Depends(get_history_store)
) -> List[ExecutionRecord]:
    try:
        return history_store.list_records(workflow_path)
    except StorageError as e:
        logger.error(f"Storage error listing history: {e.message}")
        raise _error(status.HTTP_500_INTERNAL_SERVER_ERROR, e)
    except Exception as e:
        logger.error(f"Unexpected error listing history: {str(e)}", exc_info=True)
        raise _internal_error("An unexpected error occurred while listing history", e)


@router.delete(
    "/history/{record_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete an execution record"
)
async def delete_history_record(
    record_id: str,
    history_store: HistoryStore = Depends(get_history_store)
):
    try:
        deleted = history_store.delete_record(record_id)
    except StorageError as e:
        logger.error(f"Storage error deleting record {record_id}: {e.message}")
        raise _error(status.HTTP_500_INTERNAL_SERVER_ERROR, e)

    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "error": "RecordNotFound",
                "message": f"Execution record '{record_id}' not found",
                "details": {"record_id": record_id}
            }
        )
    logger.info(f"Deleted execution record: {record_id}")


@router.get(
    "/handlers",
    summary="List node handlers",
    description="List the node types with a registered handler"
)
async def list_handlers(
    handler_registry: HandlerRegistry = Depends(get_handler_registry)
) -> Dict[str, Any]:
    handlers = handler_registry.list_handlers()
    return {"node_types": handler_registry.node_types(), "handlers": handlers, "count": len(handlers)}
