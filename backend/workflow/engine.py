"""Workflow Execution Engine: node-graph traversal with durable suspension.

``advance(execution_id)`` is the only entry point that moves an execution
forward. One call:

1. claims the execution (pending -> running, atomic; losers return at once)
   and holds the returned claim token; every later write is guarded on it,
   so a worker whose claim was recovered as stale stops at its next write
2. picks the resume point (trigger node, a wait node's successor, or the
   node that asked to be re-run: retry, until_field re-check, crash recovery)
3. runs nodes in graph order, persisting context and appending exactly one
   WorkflowLog row per node attempt
4. stops when the execution completes, fails, or suspends

Suspension is data, not a blocked coroutine: a Wait node or a retry delay
writes ``status=waiting`` + ``resume_at`` and returns. The scheduler flips
due rows back to ``pending`` and a worker calls ``advance`` again, possibly
in another process days later.

Context metadata keys owned by the engine:
    attempts:  {node_id: failed+successful attempts of the current try}
    suspended: {"node_id", "reason": wait|recheck|retry, "next_node_id"}
"""

import time
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

import structlog

from actions.registry import ActionRegistry, get_action_registry
from app.config import get_settings
from core.constants import LogStatus, NodeType, TriggerType
from core.exceptions import (
    ConflictError,
    NotFoundError,
    ValidationError,
    WorkflowConfigError,
    WorkflowEngineError,
)
from core.utils import utcnow_naive
from db.models.execution import WorkflowExecution
from workflow.context import ExecutionContext
from workflow.definition import Node, WorkflowDefinition
from workflow.nodes import BaseNodeExecutor, NodeResult, build_node_executors
from workflow.retry_strategies import RetryStrategy
from workflow.store import ExecutionStore

logger = structlog.get_logger(__name__)


class WorkflowEngine:
    """Advances executions one node at a time until they finish or suspend."""

    def __init__(
        self,
        store: ExecutionStore,
        action_registry: ActionRegistry = None,
        clock: Callable[[], datetime] = utcnow_naive,
        retry_strategy: RetryStrategy = None,
        max_nodes_per_advance: int = None,
        recheck_seconds: int = None,
        mailer=None,
        node_executors: dict[NodeType, BaseNodeExecutor] = None,
    ):
        settings = get_settings()
        self.store = store
        self.clock = clock
        self.retry_strategy = retry_strategy or RetryStrategy.from_settings(settings)
        self.max_nodes = max_nodes_per_advance or settings.WORKFLOW_MAX_NODES_PER_ADVANCE
        self.node_executors = node_executors or build_node_executors(
            action_registry or get_action_registry(),
            recheck_seconds=recheck_seconds or settings.WAIT_UNTIL_FIELD_RECHECK_SECONDS,
            session_factory=store.session_factory,
            mailer=mailer,
        )

    # ─── Ingestion / operator surface ─────────────────────────

    async def start(
        self,
        workflow_id: str,
        trigger_data: Optional[dict] = None,
        trigger_type: str = TriggerType.MANUAL.value,
        metadata: Optional[dict] = None,
    ) -> WorkflowExecution:
        """Create a pending execution for an active, valid workflow."""
        workflow = await self.store.get_workflow(workflow_id)
        if workflow is None:
            raise NotFoundError(f"Workflow {workflow_id} not found")
        if not workflow.is_active:
            raise ValidationError(f"Workflow {workflow_id} is not active")
        WorkflowDefinition.from_dict(workflow.definition)

        execution = await self.store.create_execution(
            workflow, trigger_data=trigger_data, trigger_type=trigger_type, metadata=metadata
        )
        logger.info(
            "Execution created",
            execution_id=execution.id, workflow_id=workflow_id, trigger_type=trigger_type,
        )
        return execution

    async def cancel(self, execution_id: str, reason: str = "cancelled by operator") -> WorkflowExecution:
        """Mark a non-terminal execution failed. The running worker stops before its next node."""
        execution = await self.store.get_execution(execution_id)
        if execution is None:
            raise NotFoundError(f"Execution {execution_id} not found")
        if not await self.store.cancel(execution_id, reason, self.clock()):
            raise ConflictError(f"Execution {execution_id} is already {execution.status}")
        logger.info("Execution cancelled", execution_id=execution_id, reason=reason)
        return await self.store.get_execution(execution_id)

    # ─── Traversal ────────────────────────────────────────────

    async def advance(self, execution_id: str) -> Optional[WorkflowExecution]:
        """Run an execution from its resume point until it completes, fails or suspends.

        Returns the execution row as persisted afterwards, or None if it
        does not exist. An execution that cannot be claimed (not pending,
        or another worker won) is returned untouched.
        """
        claim_id = await self.store.claim(execution_id, self.clock())
        if claim_id is None:
            return await self.store.get_execution(execution_id)

        execution = await self.store.get_execution(execution_id)
        context = ExecutionContext.from_dict(execution.context)
        log = logger.bind(execution_id=execution_id, workflow_id=execution.workflow_id, claim_id=claim_id)
        log.info("Execution claimed", current_node_id=execution.current_node_id)

        try:
            definition = await self._load_definition(execution.workflow_id)
            node_id = self._resume_point(definition, execution, context)
        except WorkflowConfigError as e:
            await self._fail(execution_id, claim_id, e.message, context, log)
            return await self.store.get_execution(execution_id)

        await self._run(execution_id, claim_id, definition, node_id, context, log)
        return await self.store.get_execution(execution_id)

    async def _load_definition(self, workflow_id: str) -> WorkflowDefinition:
        workflow = await self.store.get_workflow(workflow_id)
        if workflow is None:
            raise WorkflowConfigError(f"Workflow {workflow_id} no longer exists")
        if not workflow.is_active:
            raise WorkflowConfigError(f"Workflow {workflow_id} is not active")
        return WorkflowDefinition.from_dict(workflow.definition)

    @staticmethod
    def _resume_point(
        definition: WorkflowDefinition,
        execution: WorkflowExecution,
        context: ExecutionContext,
    ) -> Optional[str]:
        if execution.current_node_id is None:
            return definition.trigger_node().id

        suspended = context.metadata.pop("suspended", None) or {}
        if suspended.get("node_id") == execution.current_node_id and suspended.get("reason") == "wait":
            return suspended.get("next_node_id")
        # retry, until_field re-check, or a crashed worker: run the node again
        return execution.current_node_id

    async def _run(
        self,
        execution_id: str,
        claim_id: str,
        definition: WorkflowDefinition,
        node_id: Optional[str],
        context: ExecutionContext,
        log,
    ) -> None:
        if node_id is not None:
            await self.store.save_progress(execution_id, claim_id, node_id, context, self.clock())
        steps = 0
        while node_id is not None:
            if steps >= self.max_nodes:
                await self._fail(
                    execution_id,
                    claim_id,
                    f"Exceeded {self.max_nodes} nodes in one advance (cycle in workflow graph?)",
                    context,
                    log,
                )
                return
            steps += 1

            if not await self.store.holds_claim(execution_id, claim_id):
                log.info("Execution no longer running under this claim, stopping", node_id=node_id)
                return

            node = definition.get(node_id)
            now = self.clock()
            attempt = context.record_attempt(node.id)
            result, duration_ms = await self._execute_node(node, context, now, log)

            if not result.success:
                await self._handle_failure(execution_id, claim_id, node, attempt, result, duration_ms, context, now, log)
                return

            context.reset_attempts(node.id)
            context.record_output(node.id, result.output, save_as=result.save_as)
            logged = await self.store.append_log(
                execution_id,
                node_id=node.id,
                node_type=node.type.value,
                attempt_number=attempt,
                status=LogStatus.SUCCESS.value,
                output=_as_log_output(result.output),
                duration_ms=duration_ms,
                timestamp=now,
                claim_id=claim_id,
            )
            if logged is None:
                log.warning("Claim lost while the node ran, discarding its result", node_id=node.id)
                return
            log.info("Node completed", node_id=node.id, node_type=node.type.value, attempt=attempt)

            next_node_id = self._next_node(node, result)

            if result.should_wait:
                context.metadata["suspended"] = {
                    "node_id": node.id,
                    "reason": "recheck" if result.recheck else "wait",
                    "next_node_id": next_node_id,
                }
                if await self.store.suspend(execution_id, claim_id, node.id, context, result.wait_until, now):
                    log.info(
                        "Execution suspended",
                        node_id=node.id, resume_at=result.wait_until.isoformat(), recheck=result.recheck,
                    )
                return

            if next_node_id is None:
                if await self.store.complete(execution_id, claim_id, context, now):
                    log.info(
                        "Execution completed",
                        last_node_id=node.id, end_of_path=result.end_of_path,
                    )
                return

            if not await self.store.save_progress(execution_id, claim_id, next_node_id, context, now):
                log.info("Execution no longer running under this claim, stopping", node_id=next_node_id)
                return
            node_id = next_node_id

        # Resumed from a wait node that was the last node in the graph
        if await self.store.complete(execution_id, claim_id, context, self.clock()):
            log.info("Execution completed", last_node_id=None)

    async def _execute_node(self, node: Node, context: ExecutionContext, now: datetime, log):
        executor = self.node_executors.get(node.type)
        start = time.monotonic()
        try:
            if executor is None:
                raise WorkflowConfigError(f"No executor for node type '{node.type.value}'")
            result = await executor.execute(node, context, now)
        except WorkflowEngineError as e:
            result = NodeResult.failure(e.message, retryable=e.retryable)
        except Exception as e:
            log.error("Node executor raised", node_id=node.id, error=str(e), exc_info=True)
            result = NodeResult.failure(f"{type(e).__name__}: {e}", retryable=False)
        duration_ms = int((time.monotonic() - start) * 1000)
        return result, duration_ms

    @staticmethod
    def _next_node(node: Node, result: NodeResult) -> Optional[str]:
        if result.end_of_path:
            return None
        if result.next_node_id is not None:
            return result.next_node_id
        if node.type == NodeType.CONDITION:
            return None
        return node.next_node_id

    def _strategy_for(self, node: Node) -> RetryStrategy:
        return RetryStrategy.from_dict(node.config.get("retry"), default=self.retry_strategy)

    async def _handle_failure(
        self,
        execution_id: str,
        claim_id: str,
        node: Node,
        attempt: int,
        result: NodeResult,
        duration_ms: int,
        context: ExecutionContext,
        now: datetime,
        log,
    ) -> None:
        strategy = self._strategy_for(node)
        retryable = node.type == NodeType.ACTION and result.retryable
        error = result.error or "Node failed without an error message"

        if strategy.should_retry(attempt, retryable):
            delay = strategy.compute_delay(attempt)
            resume_at = now + timedelta(seconds=delay)
            logged = await self.store.append_log(
                execution_id,
                node_id=node.id,
                node_type=node.type.value,
                attempt_number=attempt,
                status=LogStatus.RETRYING.value,
                error=error,
                duration_ms=duration_ms,
                retry_delay_ms=int(delay * 1000),
                timestamp=now,
                claim_id=claim_id,
            )
            if logged is None:
                log.warning("Claim lost while the node ran, discarding its failure", node_id=node.id)
                return
            context.metadata["suspended"] = {"node_id": node.id, "reason": "retry", "next_node_id": None}
            if await self.store.suspend(execution_id, claim_id, node.id, context, resume_at, now):
                log.warning(
                    "Node failed, retry scheduled",
                    node_id=node.id, attempt=attempt, delay_s=delay, error=error,
                )
            return

        logged = await self.store.append_log(
            execution_id,
            node_id=node.id,
            node_type=node.type.value,
            attempt_number=attempt,
            status=LogStatus.FAILED.value,
            error=error,
            duration_ms=duration_ms,
            timestamp=now,
            claim_id=claim_id,
        )
        if logged is None:
            log.warning("Claim lost while the node ran, discarding its failure", node_id=node.id)
            return
        await self._fail(execution_id, claim_id, f"Node '{node.id}' failed: {error}", context, log, node_id=node.id)

    async def _fail(
        self, execution_id: str, claim_id: str, error: str, context: ExecutionContext, log, node_id: str = None
    ) -> None:
        if await self.store.fail(execution_id, claim_id, error, self.clock(), context=context):
            log.error("Execution failed", node_id=node_id, error=error)


def _as_log_output(output: Any) -> Optional[dict]:
    if output is None or isinstance(output, dict):
        return output
    return {"value": output}


def create_engine_for(session_factory, **kwargs) -> WorkflowEngine:
    """Engine bound to a session factory (API process or a worker task)."""
    return WorkflowEngine(ExecutionStore(session_factory), **kwargs)
