"""Stack-based workflow interpreter."""

import asyncio
import inspect
import threading
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Set
from pydantic import BaseModel, ConfigDict, Field

from ..models.core import (
    ExecutionContext,
    ExecutionLog,
    ExecutionRecord,
    ExecutionStatus,
    LogStatus,
    NodeType,
    StepStatus,
    VariableValue,
    Workflow,
    WorkflowNode,
)
from .collaborators import CollaboratorRegistry
from .exceptions import (
    Cancelled,
    HandlerFailure,
    IterationLimitExceeded,
    MalformedDefinition,
    RegenerationRequested,
    StorageError,
    WorkflowEngineError,
)
from .handler_registry import HandlerRegistry, build_default_registry
from .history import HistoryStore
from .logging import get_logger, set_logging_context, clear_logging_context
from .results import Branch, Continue, RequestRegeneration
from .templating import format_value, resolve

logger = get_logger(__name__)

LogCallback = Callable[[ExecutionLog], None]


class CancellationToken:
    """Cooperative cancellation flag polled once per stack frame."""

    def __init__(self):
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: Optional[str] = None) -> None:
        self.reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()


class ExecuteOptions(BaseModel):
    """Options for a top-level execution."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    workflow_path: str = Field("<inline>", description="Path recorded in history")
    workflow_name: Optional[str] = Field(None, description="Workflow name recorded in history")
    record_history: bool = Field(True, description="Create a history record for this run")
    record_id: Optional[str] = Field(None, description="Use this id for the history record")
    cancel_token: Optional[CancellationToken] = Field(None, description="Token used to stop the run")


class ExecutionResult(BaseModel):
    """Outcome of a completed execution."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    context: ExecutionContext
    record: Optional[ExecutionRecord] = None

    @property
    def variables(self) -> Dict[str, VariableValue]:
        return self.context.variables


class _Frame(NamedTuple):
    node_id: str
    # pushed under a regenerated command; dropped if the command's successors reach the node first
    fallback: bool = False


class Runtime:
    """Per-execution services handed to node handlers."""

    def __init__(
        self,
        interpreter: "WorkflowInterpreter",
        emit: LogCallback,
        cancel_token: CancellationToken,
        depth: int = 0
    ):
        self._interpreter = interpreter
        self._emit = emit
        self.cancel_token = cancel_token
        self.depth = depth
        self.collaborators: CollaboratorRegistry = interpreter.collaborators
        self.default_model: str = interpreter.default_model
        self.max_template_passes: int = interpreter.max_template_passes
        self.http_timeout: float = interpreter.http_timeout

    def resolve(self, template: Optional[str], context: ExecutionContext) -> str:
        """Resolve placeholders using this execution's pass limit."""
        return resolve(template or "", context, self.max_template_passes)

    def collaborator(self, name: str, required: bool = True) -> Any:
        return self.collaborators.get(name, required=required)

    def log(
        self,
        node: WorkflowNode,
        message: str,
        status: LogStatus = LogStatus.INFO,
        input: Optional[Dict[str, Any]] = None,
        output: Any = None
    ) -> None:
        """Emit an execution log entry for ``node``."""
        self._emit(ExecutionLog(
            node_id=node.id,
            node_type=node.type.value,
            message=message,
            status=status,
            input=input,
            output=output,
        ))

    async def run_subworkflow(
        self,
        workflow: Workflow,
        variables: Dict[str, VariableValue],
        parent: WorkflowNode
    ) -> ExecutionContext:
        """Run ``workflow`` in a fresh context and return that context.

        Log entries are relayed to the parent with ``parent/child`` ids and a
        ``[sub]`` message prefix. No history record is created.
        """
        if self.depth + 1 > self._interpreter.max_subworkflow_depth:
            raise HandlerFailure(
                f"Sub-workflow nesting exceeded maximum depth ({self._interpreter.max_subworkflow_depth})",
                node_id=parent.id,
                node_type=parent.type.value
            )

        def relay(entry: ExecutionLog) -> None:
            self._emit(entry.model_copy(update={
                "node_id": f"{parent.id}/{entry.node_id}",
                "message": f"[sub] {entry.message}",
            }))

        sub_context = ExecutionContext(variables)
        await self._interpreter._run(
            workflow, sub_context, relay, self.cancel_token, self.depth + 1, record=None
        )
        return sub_context


class WorkflowInterpreter:
    """Executes parsed workflows one node at a time.

    The interpreter walks the graph with a LIFO stack of node ids, dispatching
    each node to its registered handler. Branch nodes push only the edges
    matching their condition result; other nodes push every outgoing edge.
    """

    def __init__(
        self,
        handlers: Optional[HandlerRegistry] = None,
        collaborators: Optional[CollaboratorRegistry] = None,
        history: Optional[HistoryStore] = None,
        config=None
    ):
        """Initialize the interpreter.

        Args:
            handlers: Handler registry; defaults to the built-in handlers
            collaborators: Collaborator registry passed to handlers
            history: Store receiving execution records
            config: ``AppConfig`` supplying limits and defaults
        """
        if config is None:
            from ..config import get_config
            config = get_config()

        self.handlers = handlers or build_default_registry()
        self.collaborators = collaborators or CollaboratorRegistry()
        self.history = history
        self.max_iterations = config.max_iterations
        self.max_loop_iterations = config.max_loop_iterations
        self.max_template_passes = config.max_template_passes
        self.max_subworkflow_depth = config.max_subworkflow_depth
        self.record_history = config.record_history
        self.default_model = config.default_model
        self.http_timeout = config.http_timeout

    async def execute(
        self,
        workflow: Workflow,
        variables: Optional[Dict[str, VariableValue]] = None,
        on_log: Optional[LogCallback] = None,
        options: Optional[ExecuteOptions] = None
    ) -> ExecutionResult:
        """
        Execute a workflow to completion.

        Args:
            workflow: Parsed workflow
            variables: Initial variables
            on_log: Callback invoked once per log entry, in execution order
            options: Execution options

        Returns:
            The execution context and the finalized history record

        Raises:
            MalformedDefinition: If the workflow has no start node
            HandlerFailure: If a node fails
            IterationLimitExceeded: If the global or a loop cap is exceeded
            Cancelled: If the run was cancelled
        """
        options = options or ExecuteOptions()
        token = options.cancel_token or CancellationToken()

        if not workflow.start_node:
            raise MalformedDefinition("No workflow nodes found", workflow_name=workflow.name)

        context = ExecutionContext(variables)

        record = None
        if options.record_history and self.record_history and self.history is not None:
            record = self.history.create_record(
                options.workflow_path,
                options.workflow_name or workflow.name,
                record_id=options.record_id
            )

        def emit(entry: ExecutionLog) -> None:
            context.logs.append(entry)
            if on_log is not None:
                on_log(entry)

        set_logging_context(
            run_id=record.id if record else None,
            workflow=options.workflow_path
        )
        logger.info(f"Starting workflow execution: {options.workflow_path}")
        try:
            await self._run(workflow, context, emit, token, depth=0, record=record)
        finally:
            clear_logging_context()

        logger.info(f"Workflow execution completed: {options.workflow_path}")
        return ExecutionResult(context=context, record=record)

    async def _run(
        self,
        workflow: Workflow,
        context: ExecutionContext,
        emit: LogCallback,
        token: CancellationToken,
        depth: int,
        record: Optional[ExecutionRecord]
    ) -> None:
        """Run the stack loop for one workflow level."""
        runtime = Runtime(self, emit, token, depth)
        stack: List[_Frame] = [_Frame(workflow.start_node)]
        loop_states: Dict[str, int] = {}
        awaiting_review: Set[str] = set()
        dispatched = 0
        node: Optional[WorkflowNode] = None
        dispatching = False

        def log(target: WorkflowNode, message: str, status=LogStatus.INFO, input=None, output=None):
            runtime.log(target, message, status, input, output)

        try:
            while stack:
                frame = stack.pop()
                node = workflow.nodes.get(frame.node_id)
                if node is None:
                    logger.debug(f"Skipping missing node on stack: {frame.node_id}")
                    continue
                if frame.fallback and node.id not in awaiting_review:
                    continue
                awaiting_review.discard(node.id)

                if token.is_cancelled:
                    raise Cancelled(token.reason or "Workflow execution was stopped")

                dispatched += 1
                if dispatched > self.max_iterations:
                    raise IterationLimitExceeded(
                        f"Workflow exceeded maximum iterations ({self.max_iterations})",
                        scope=IterationLimitExceeded.GLOBAL,
                        limit=self.max_iterations,
                        node_id=node.id
                    )

                log(node, f"Executing node: {node.type.value}")
                dispatching = True
                outcome = await self._dispatch(node, context, runtime)

                if isinstance(outcome, RequestRegeneration):
                    info = outcome.info
                    context.regenerate_info = info
                    feedback = info.additional_request[:50]
                    log(node, f'User requested regeneration with feedback: "{feedback}..."')
                    awaiting_review.add(node.id)
                    stack.append(_Frame(node.id, fallback=True))
                    stack.append(_Frame(info.command_node_id))
                    dispatching = False
                    continue

                if node.type.is_branch:
                    branch = self._branch_value(node, outcome)
                    self._record_branch(node, branch, loop_states, log, record)
                    next_ids = workflow.next_nodes(node.id, branch.value)
                else:
                    result = outcome if isinstance(outcome, Continue) else Continue(output=outcome)
                    log(
                        node,
                        result.message or f"{node.type.value} completed",
                        LogStatus.SUCCESS,
                        result.input,
                        result.output
                    )
                    self._add_step(record, node, result.input, result.output)
                    next_ids = workflow.next_nodes(node.id)

                dispatching = False
                for next_id in reversed(next_ids):
                    stack.append(_Frame(next_id))

        except Cancelled as e:
            if node is not None:
                log(node, f"Error: {e.message}", LogStatus.ERROR)
                if dispatching:
                    self._add_step(record, node, None, None, StepStatus.ERROR, e.message)
            await self._finalize(record, ExecutionStatus.CANCELLED, node.id if node else None)
            logger.info(f"Workflow execution cancelled: {e.message}")
            raise
        except WorkflowEngineError as e:
            await self._fail(record, node, dispatching, e.message, log)
            raise
        except Exception as e:
            message = str(e) or type(e).__name__
            failure = HandlerFailure(
                message,
                node_id=node.id if node else None,
                node_type=node.type.value if node else None,
                run_id=record.id if record else None
            )
            await self._fail(record, node, dispatching, message, log)
            raise failure from e

        await self._finalize(record, ExecutionStatus.COMPLETED, variables=context.variables)

    async def _dispatch(self, node: WorkflowNode, context: ExecutionContext, runtime: Runtime) -> Any:
        handler = self.handlers.get(node.type.value)
        try:
            result = handler(node, context, runtime)
            if inspect.isawaitable(result):
                result = await result
        except RegenerationRequested:
            if context.regenerate_info is None:
                raise HandlerFailure(
                    "Regeneration requested without regeneration info",
                    node_id=node.id,
                    node_type=node.type.value
                )
            return RequestRegeneration(info=context.regenerate_info)
        return result

    def _branch_value(self, node: WorkflowNode, outcome: Any) -> Branch:
        if isinstance(outcome, Branch):
            return outcome
        if isinstance(outcome, bool):
            return Branch(value=outcome, input={"condition": node.prop("condition")})
        raise HandlerFailure(
            f"Handler for {node.type.value} node must return a boolean",
            node_id=node.id,
            node_type=node.type.value
        )

    def _record_branch(self, node, branch: Branch, loop_states, log, record) -> None:
        value_text = format_value(branch.value)

        if node.type == NodeType.WHILE:
            if branch.value:
                count = loop_states.get(node.id, 0) + 1
                if count > self.max_loop_iterations:
                    raise IterationLimitExceeded(
                        f"While loop exceeded maximum iterations ({self.max_loop_iterations})",
                        scope=IterationLimitExceeded.LOOP,
                        limit=self.max_loop_iterations,
                        node_id=node.id
                    )
                loop_states[node.id] = count
                step_input = {**(branch.input or {}), "iteration": count}
                log(node, f"Loop iteration {count}, condition: true", LogStatus.SUCCESS, step_input, True)
            else:
                loop_states.pop(node.id, None)
                step_input = branch.input
                log(node, "Loop condition false, exiting", LogStatus.SUCCESS, step_input, False)
        else:
            step_input = branch.input
            log(node, f"Condition evaluated to: {value_text}", LogStatus.SUCCESS, step_input, branch.value)

        self._add_step(record, node, step_input, branch.value)

    def _add_step(self, record, node: WorkflowNode, input, output, status=StepStatus.SUCCESS, error=None):
        if record is not None and self.history is not None:
            self.history.add_step(record, node.id, node.type.value, input, output, status, error)

    async def _fail(self, record, node: Optional[WorkflowNode], dispatching: bool, message: str, log) -> None:
        if node is not None:
            log(node, f"Error: {message}", LogStatus.ERROR)
            if dispatching:
                self._add_step(record, node, None, None, StepStatus.ERROR, message)
        logger.error(f"Workflow execution failed at {node.id if node else '<start>'}: {message}")
        await self._finalize(record, ExecutionStatus.ERROR, node.id if node else None)

    async def _finalize(
        self,
        record: Optional[ExecutionRecord],
        status: ExecutionStatus,
        error_node_id: Optional[str] = None,
        variables: Optional[Dict[str, VariableValue]] = None
    ) -> None:
        if record is None or self.history is None:
            return
        self.history.complete_record(record, status, error_node_id=error_node_id, variables=variables)
        try:
            # the SQL store commits and backs off with blocking sleeps
            await asyncio.to_thread(self.history.save_record, record)
        except StorageError as e:
            logger.error(f"Failed to persist execution record {record.id}: {e.message}")
            if status == ExecutionStatus.COMPLETED:
                raise
