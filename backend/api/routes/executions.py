"""Trigger ingestion and execution inspection endpoints."""

from fastapi import APIRouter, Depends, Query, status as http_status
import logging

from api.schemas.execution import (
    CancelRequest,
    ExecutionResponse,
    TriggerRequest,
    WorkflowLogListResponse,
    WorkflowLogResponse,
)
from app.config import get_settings
from app.dependencies import get_engine
from core.constants import TriggerType
from core.exceptions import NotFoundError, ValidationError
from workflow.engine import WorkflowEngine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["executions"])

_INGESTION_TRIGGER_TYPES = {TriggerType.MANUAL.value, TriggerType.WEBHOOK.value, TriggerType.EVENT.value}


def _dispatch(execution_id: str) -> None:
    from worker.tasks.workflow import advance_execution

    advance_execution.delay(execution_id)


@router.post(
    "/workflows/{workflow_id}/trigger",
    response_model=ExecutionResponse,
    status_code=http_status.HTTP_202_ACCEPTED,
)
async def trigger_workflow(
    workflow_id: str,
    request: TriggerRequest,
    engine: WorkflowEngine = Depends(get_engine),
) -> ExecutionResponse:
    """
    Start a workflow. The execution is created pending; a worker advances it.
    """
    if request.trigger_type not in _INGESTION_TRIGGER_TYPES:
        raise ValidationError(f"Unsupported trigger_type '{request.trigger_type}'")

    execution = await engine.start(
        workflow_id,
        trigger_data=request.trigger_data,
        trigger_type=request.trigger_type,
        metadata={"triggered_by": "api"},
    )
    if get_settings().DISPATCH_ON_TRIGGER:
        _dispatch(execution.id)
    return ExecutionResponse.model_validate(execution)


@router.get("/executions/{execution_id}", response_model=ExecutionResponse)
async def get_execution(
    execution_id: str,
    engine: WorkflowEngine = Depends(get_engine),
) -> ExecutionResponse:
    execution = await engine.store.get_execution(execution_id)
    if execution is None:
        raise NotFoundError(f"Execution {execution_id} not found")
    return ExecutionResponse.model_validate(execution)


@router.get("/executions/{execution_id}/logs", response_model=WorkflowLogListResponse)
async def get_execution_logs(
    execution_id: str,
    limit: int = Query(500, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    engine: WorkflowEngine = Depends(get_engine),
) -> WorkflowLogListResponse:
    """
    Node attempts of an execution in the order they ran.
    """
    if await engine.store.get_execution(execution_id) is None:
        raise NotFoundError(f"Execution {execution_id} not found")
    logs = await engine.store.list_logs(execution_id, limit=limit, offset=offset)
    return WorkflowLogListResponse(
        execution_id=execution_id,
        logs=[WorkflowLogResponse.model_validate(entry) for entry in logs],
        count=len(logs),
    )


@router.post("/executions/{execution_id}/cancel", response_model=ExecutionResponse)
async def cancel_execution(
    execution_id: str,
    request: CancelRequest = None,
    engine: WorkflowEngine = Depends(get_engine),
) -> ExecutionResponse:
    """
    Mark a pending, running or waiting execution failed.
    """
    reason = request.reason if request else CancelRequest().reason
    execution = await engine.cancel(execution_id, reason)
    logger.info(f"Execution {execution_id} cancelled via API")
    return ExecutionResponse.model_validate(execution)
