"""
FastAPI routers for scheduling and queue-driven execution.

``router`` is the client-facing scheduling API. ``execution_router`` holds
the endpoints the durable queue (or the immediate-execution bypass) calls at
the scheduled time.
"""

import hmac
import json
from collections.abc import Awaitable, Callable
from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from vetcall.calls.models import ScheduledCall, ScheduledEmail
from vetcall.calls.repository import ScheduledCallRepository, ScheduledEmailRepository
from vetcall.config import get_settings
from vetcall.scheduling.config import QueueConfig
from vetcall.scheduling.execution import CallExecutor, EmailExecutor, EmailSender, ExecutionOutcome
from vetcall.scheduling.qstash import (
    SIGNATURE_HEADER,
    QStashSignatureVerifier,
    SignatureVerificationError,
)
from vetcall.scheduling.scheduler import IMMEDIATE_SECRET_HEADER, DelayedJobScheduler, JobKind
from vetcall.scheduling.schemas import (
    ScheduleCallRequest,
    ScheduledJobData,
    ScheduleEmailRequest,
    ScheduleResponse,
)
from vetcall.shared.database import get_db_session
from vetcall.shared.exceptions import NotFoundError, UpstreamError
from vetcall.shared.logging import get_logger
from vetcall.telephony.config import get_voice_provider_config
from vetcall.telephony.interface import VoiceProvider

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["scheduling"])
execution_router = APIRouter(prefix="/api/webhooks", tags=["execution"])


def get_job_scheduler(request: Request) -> DelayedJobScheduler:
    return request.app.state.job_scheduler


def get_voice_provider(request: Request) -> VoiceProvider:
    return request.app.state.voice_provider


def get_email_sender(request: Request) -> EmailSender:
    return request.app.state.email_sender


def get_queue_config(request: Request) -> QueueConfig:
    return request.app.state.queue_config


def get_signature_verifier(request: Request) -> QStashSignatureVerifier:
    return request.app.state.signature_verifier


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _first_error(exc: PydanticValidationError) -> str:
    error = exc.errors(include_url=False)[0]
    field = ".".join(str(loc) for loc in error["loc"])
    return f"{field}: {error['msg']}" if field else error["msg"]


# ----------------------------
# Scheduling API
# ----------------------------


@router.post("/calls/schedule", status_code=status.HTTP_200_OK)
async def schedule_call(
    body: Annotated[dict[str, Any], Body()],
    scheduler: Annotated[DelayedJobScheduler, Depends(get_job_scheduler)],
) -> Any:
    try:
        req = ScheduleCallRequest.model_validate(body)
    except PydanticValidationError as e:
        return _error(status.HTTP_400_BAD_REQUEST, _first_error(e))

    provider_config = get_voice_provider_config()
    assistant_id = req.assistant_id or provider_config.assistant_id
    if not assistant_id:
        return _error(status.HTTP_400_BAD_REQUEST, "assistantId is required")

    def build_row() -> ScheduledCall:
        return ScheduledCall(
            case_id=req.case_id,
            clinic_id=req.clinic_id,
            customer_phone=req.customer_phone,
            customer_name=req.customer_name,
            assistant_id=assistant_id,
            phone_number_id=req.phone_number_id or provider_config.phone_number_id or None,
            dynamic_variables=req.dynamic_variables,
            scheduled_for=req.scheduled_for,
            extra_metadata={**req.metadata, "max_retries": get_settings().call_max_retries},
        )

    job = await scheduler.create_and_schedule(JobKind.CALL, build_row, req.scheduled_for)
    response = ScheduleResponse(
        data=ScheduledJobData(
            job_id=job.id,
            scheduled_for=job.scheduled_for,
            durable_job_id=job.durable_job_id,
        )
    )
    return response.model_dump(mode="json", by_alias=True)


@router.post("/emails/schedule", status_code=status.HTTP_200_OK)
async def schedule_email(
    body: Annotated[dict[str, Any], Body()],
    scheduler: Annotated[DelayedJobScheduler, Depends(get_job_scheduler)],
) -> Any:
    try:
        req = ScheduleEmailRequest.model_validate(body)
    except PydanticValidationError as e:
        return _error(status.HTTP_400_BAD_REQUEST, _first_error(e))

    def build_row() -> ScheduledEmail:
        return ScheduledEmail(
            case_id=req.case_id,
            recipient_email=req.recipient_email,
            recipient_name=req.recipient_name,
            subject=req.subject,
            html_content=req.html_content,
            text_content=req.text_content,
            scheduled_for=req.scheduled_for,
            is_test=req.is_test,
            extra_metadata=req.metadata,
        )

    job = await scheduler.create_and_schedule(JobKind.EMAIL, build_row, req.scheduled_for)
    response = ScheduleResponse(
        data=ScheduledJobData(
            job_id=job.id,
            scheduled_for=job.scheduled_for,
            durable_job_id=job.durable_job_id,
        )
    )
    return response.model_dump(mode="json", by_alias=True)


@router.post("/calls/{call_id}/cancel")
async def cancel_call(
    call_id: UUID,
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> Any:
    repo = ScheduledCallRepository(session)
    if await repo.cancel(call_id):
        logger.info("Call canceled", extra={"call_id": str(call_id)})
        return {"success": True, "data": {"jobId": str(call_id), "status": "canceled"}}

    call = await repo.get_by_id(call_id)
    if call is None:
        raise NotFoundError(f"Scheduled call not found: {call_id}")
    return _error(status.HTTP_409_CONFLICT, f"Call cannot be canceled in status {call.status.value}")


@router.post("/emails/{email_id}/cancel")
async def cancel_email(
    email_id: UUID,
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> Any:
    repo = ScheduledEmailRepository(session)
    if await repo.cancel(email_id):
        logger.info("Email canceled", extra={"email_id": str(email_id)})
        return {"success": True, "data": {"jobId": str(email_id), "status": "canceled"}}

    email = await repo.get_by_id(email_id)
    if email is None:
        raise NotFoundError(f"Scheduled email not found: {email_id}")
    return _error(status.HTTP_409_CONFLICT, f"Email cannot be canceled in status {email.status.value}")


@router.post("/calls/{call_id}/execute-now")
async def execute_call_now(
    call_id: UUID,
    scheduler: Annotated[DelayedJobScheduler, Depends(get_job_scheduler)],
) -> Any:
    return {"success": await scheduler.execute_immediately(JobKind.CALL, call_id)}


@router.post("/emails/{email_id}/execute-now")
async def execute_email_now(
    email_id: UUID,
    scheduler: Annotated[DelayedJobScheduler, Depends(get_job_scheduler)],
) -> Any:
    return {"success": await scheduler.execute_immediately(JobKind.EMAIL, email_id)}


# ----------------------------
# Execution endpoints (queue callbacks)
# ----------------------------


def _authenticate(
    request: Request,
    body: bytes,
    kind: JobKind,
    verifier: QStashSignatureVerifier,
    queue_config: QueueConfig,
) -> str:
    """Return the auth path used, raising on failure.

    The immediate-execution header takes precedence over the queue signature.
    """
    provided = request.headers.get(IMMEDIATE_SECRET_HEADER)
    if provided is not None:
        secret = get_settings().immediate_execution_secret
        if not secret or not hmac.compare_digest(provided, secret):
            raise SignatureVerificationError("Invalid immediate execution secret")
        return "immediate"

    verifier.verify(request.headers.get(SIGNATURE_HEADER), body, queue_config.execution_url(kind.value))
    return "queue"


def _target_id(body: bytes, kind: JobKind) -> UUID | None:
    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    legacy_key = "callId" if kind == JobKind.CALL else "emailId"
    raw = payload.get("targetId") or payload.get(legacy_key)
    if not raw:
        return None
    try:
        return UUID(str(raw))
    except ValueError:
        return None


def _outcome_response(outcome: ExecutionOutcome) -> dict[str, Any]:
    if outcome.already_processed:
        return {"success": True, "alreadyProcessed": True, "status": outcome.status}
    return {"success": True, "status": outcome.status, "providerId": outcome.provider_id}


async def _run_execution(
    request: Request,
    kind: JobKind,
    verifier: QStashSignatureVerifier,
    queue_config: QueueConfig,
    execute: Callable[[UUID], Awaitable[ExecutionOutcome]],
) -> Any:
    body = await request.body()
    try:
        auth_path = _authenticate(request, body, kind, verifier, queue_config)
    except SignatureVerificationError as e:
        logger.warning("Execution request rejected", extra={"kind": kind.value, "error": str(e)})
        return _error(status.HTTP_401_UNAUTHORIZED, "Unauthorized")

    target_id = _target_id(body, kind)
    if target_id is None:
        return _error(status.HTTP_400_BAD_REQUEST, "Missing targetId in payload")

    logger.info(
        "Execution triggered",
        extra={"kind": kind.value, "target_id": str(target_id), "auth_path": auth_path},
    )
    try:
        outcome = await execute(target_id)
    except NotFoundError as e:
        return _error(status.HTTP_404_NOT_FOUND, str(e))
    except UpstreamError:
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, f"Failed to execute {kind.value}")
    return _outcome_response(outcome)


@execution_router.post("/execute-call")
async def execute_call(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db_session)],
    provider: Annotated[VoiceProvider, Depends(get_voice_provider)],
    verifier: Annotated[QStashSignatureVerifier, Depends(get_signature_verifier)],
    queue_config: Annotated[QueueConfig, Depends(get_queue_config)],
) -> Any:
    executor = CallExecutor(
        session,
        provider,
        default_phone_number_id=get_voice_provider_config().phone_number_id,
    )
    return await _run_execution(request, JobKind.CALL, verifier, queue_config, executor.execute)


@execution_router.post("/execute-email")
async def execute_email(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db_session)],
    sender: Annotated[EmailSender, Depends(get_email_sender)],
    verifier: Annotated[QStashSignatureVerifier, Depends(get_signature_verifier)],
    queue_config: Annotated[QueueConfig, Depends(get_queue_config)],
) -> Any:
    executor = EmailExecutor(session, sender)
    return await _run_execution(request, JobKind.EMAIL, verifier, queue_config, executor.execute)
