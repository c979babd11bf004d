"""Background execution of workflows for the API server."""

import asyncio
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from ..models.core import ExecutionLog, ExecutionStatus, VariableValue, Workflow
from .exceptions import Cancelled, WorkflowEngineError
from .history import generate_record_id
from .interpreter import CancellationToken, ExecuteOptions, WorkflowInterpreter
from .logging import get_logger

logger = get_logger(__name__)


class RunState(BaseModel):
    """In-memory state of a run started by the ``RunManager``."""
    run_id: str = Field(..., description="Run identifier, also the history record id")
    workflow_path: str = Field(..., description="Path recorded in history")
    status: ExecutionStatus = Field(ExecutionStatus.RUNNING, description="Current status")
    error: Optional[str] = Field(None, description="Error message for failed runs")
    variables: Dict[str, VariableValue] = Field(default_factory=dict, description="Final variables")
    logs: List[ExecutionLog] = Field(default_factory=list, description="Log entries so far")


class RunManager:
    """Starts executions as asyncio tasks and keeps a cancellation token per run."""

    def __init__(self, interpreter: WorkflowInterpreter, max_finished_runs: int = 100):
        """Initialize the manager.

        Args:
            interpreter: Interpreter used for every run
            max_finished_runs: Finished run states kept in memory
        """
        self.interpreter = interpreter
        self.max_finished_runs = max_finished_runs
        self._tasks: Dict[str, asyncio.Task] = {}
        self._tokens: Dict[str, CancellationToken] = {}
        self._states: Dict[str, RunState] = {}

    def start(
        self,
        workflow: Workflow,
        variables: Optional[Dict[str, VariableValue]] = None,
        workflow_path: str = "<inline>",
        workflow_name: Optional[str] = None
    ) -> str:
        """Schedule an execution on the running event loop and return its run id."""
        run_id = generate_record_id()
        token = CancellationToken()
        state = RunState(run_id=run_id, workflow_path=workflow_path)
        options = ExecuteOptions(
            workflow_path=workflow_path,
            workflow_name=workflow_name,
            record_id=run_id,
            cancel_token=token
        )

        self._tokens[run_id] = token
        self._states[run_id] = state
        self._tasks[run_id] = asyncio.create_task(
            self._execute(run_id, workflow, variables or {}, options)
        )
        logger.info(f"Started workflow run {run_id} for {workflow_path}")
        return run_id

    async def _execute(self, run_id, workflow, variables, options) -> None:
        state = self._states[run_id]
        try:
            result = await self.interpreter.execute(
                workflow, variables, on_log=state.logs.append, options=options
            )
            state.variables = result.context.snapshot()
            state.status = ExecutionStatus.COMPLETED
        except Cancelled as e:
            state.status = ExecutionStatus.CANCELLED
            state.error = e.message
        except WorkflowEngineError as e:
            state.status = ExecutionStatus.ERROR
            state.error = e.message
            logger.warning(f"Workflow run {run_id} failed: {e.message}")
        except Exception as e:
            state.status = ExecutionStatus.ERROR
            state.error = str(e)
            logger.error(f"Unexpected error in workflow run {run_id}: {e}", exc_info=True)
        finally:
            self._cleanup(run_id)

    def _cleanup(self, run_id: str) -> None:
        self._tasks.pop(run_id, None)
        self._tokens.pop(run_id, None)

        finished = [rid for rid, s in self._states.items() if s.status != ExecutionStatus.RUNNING]
        for stale in finished[:-self.max_finished_runs] if self.max_finished_runs else finished:
            self._states.pop(stale, None)

    def get_state(self, run_id: str) -> Optional[RunState]:
        return self._states.get(run_id)

    def is_active(self, run_id: str) -> bool:
        return run_id in self._tasks

    def get_active_runs(self) -> List[str]:
        return list(self._tasks)

    def cancel(self, run_id: str, reason: str = "Workflow execution was stopped") -> bool:
        """Request cancellation of an active run.

        Returns:
            True if the run was active, False otherwise
        """
        token = self._tokens.get(run_id)
        if token is None:
            logger.warning(f"Attempted to cancel non-active run: {run_id}")
            return False
        token.cancel(reason)
        logger.info(f"Cancellation requested for run {run_id}")
        return True

    async def wait(self, run_id: str) -> Optional[RunState]:
        """Wait for a run to finish and return its final state."""
        task = self._tasks.get(run_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return self._states.get(run_id)

    async def shutdown(self) -> None:
        """Cancel every active run and wait for the tasks to finish."""
        for run_id in list(self._tokens):
            self.cancel(run_id, "Server shutting down")
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Run manager shutdown completed")
