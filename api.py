"""
HTTP API for the SkyLife workflow.

Serves the two notification contracts used by the website plus submission,
review and ticket endpoints over the same services the bot uses. Built by
create_app() so the bot (or a test) injects its own services.
"""
import logging
from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

import config
from constants import HTTP_CREATED, HTTP_UNAUTHORIZED
from core.errors import NotFoundError, ValidationError, WorkflowError
from core.exporter import export_applications_to_csv, export_filename
from core.notifications import (
    ApplicationDecision,
    ApplicationNotifier,
    TicketNotifier,
    decision_image_url,
    resolve_department,
)
from core.tickets import TicketService
from core.transformer import CATEGORY_TYPES
from core.workflow import ApplicationWorkflow, Reviewer

logger = logging.getLogger(__name__)


# ---------- Request models ----------

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ApplicationNotificationRequest(CamelModel):
    application_type: str
    applicant_name: str
    applicant_discord_id: Optional[str] = None
    status: Literal["approved", "rejected"]
    moderator_name: str
    moderator_discord_id: Optional[str] = None
    admin_notes: Optional[str] = None


class TicketNotificationRequest(CamelModel):
    ticket_id: str
    status: Literal["open", "in_progress", "on_hold", "resolved"]
    admin_notes: Optional[str] = None
    resolution: Optional[str] = None
    is_new: bool = False


class ApplicationSubmission(CamelModel):
    user_id: str
    form: Dict[str, Any] = Field(description="Form fields including application_type")


class StatusUpdateRequest(CamelModel):
    status: str
    reviewer_name: str
    reviewer_discord_id: Optional[str] = None
    admin_notes: Optional[str] = None


class TicketCreateRequest(CamelModel):
    user_id: str
    subject: str
    description: str
    category: Optional[str] = None
    priority: Optional[str] = None
    attachment_url: Optional[str] = None
    discord_id: Optional[str] = None
    discord_username: Optional[str] = None


class TicketStatusRequest(CamelModel):
    status: str
    resolved_by: Optional[str] = None
    admin_notes: Optional[str] = None
    resolution: Optional[str] = None


def _check_category(category: str):
    if category != "all" and category not in CATEGORY_TYPES:
        raise ValidationError(f"Unknown category: {category}", {"category": "Unknown category"})


def create_app(*, workflow: ApplicationWorkflow, tickets: TicketService, application_notifier: ApplicationNotifier,
               ticket_notifier: TicketNotifier, api_token: Optional[str] = None) -> FastAPI:
    """
    Build the API around already-constructed services.

    Args:
        workflow: Application workflow (submission, review, listing)
        tickets: Support ticket service
        application_notifier: Used directly by the application notification contract
        ticket_notifier: Used directly by the ticket notification contract
        api_token: When set, every route except the health check needs "Authorization: Bearer <token>"
    """
    app = FastAPI(title=f"{config.BRAND_NAME} API")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.workflow = workflow
    app.state.tickets = tickets

    @app.exception_handler(WorkflowError)
    async def workflow_error_handler(request: Request, exc: WorkflowError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        else:
            logger.info(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
        return JSONResponse(exc.to_dict(), status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        error = ValidationError.from_pydantic(exc)
        return JSONResponse(error.to_dict(), status_code=error.status_code)

    async def require_token(authorization: Optional[str] = Header(None)):
        if not api_token:
            return
        if not authorization or not authorization.lower().startswith("bearer "):
            raise WorkflowError("Not authenticated", HTTP_UNAUTHORIZED)
        if authorization.split(" ", 1)[1].strip() != api_token:
            raise WorkflowError("Invalid token", HTTP_UNAUTHORIZED)

    router = APIRouter(dependencies=[Depends(require_token)])

    @app.get("/")
    async def health():
        return {"status": "ok", "service": config.BRAND_NAME}

    # ---------- Notification contracts ----------

    @router.post("/send-application-notification")
    async def send_application_notification(body: ApplicationNotificationRequest):
        department = resolve_department(body.application_type)
        decision = ApplicationDecision(
            application_type=body.application_type,
            applicant_name=body.applicant_name,
            applicant_discord_id=body.applicant_discord_id,
            status=body.status,
            reviewer_name=body.moderator_name,
            reviewer_discord_id=body.moderator_discord_id,
            admin_notes=body.admin_notes,
        )
        message_id = await application_notifier.send_application_decision(decision)
        return {"success": True, "messageId": message_id, "imageUrl": decision_image_url(department, body.status)}

    @router.post("/send-ticket-notification")
    async def send_ticket_notification(body: TicketNotificationRequest):
        ticket = await tickets.get(body.ticket_id)
        message_id = await ticket_notifier.send_ticket_update(
            ticket, body.status, body.admin_notes, body.resolution, body.is_new
        )
        return {"success": True, "message_id": message_id}

    # ---------- Applications ----------

    @router.post("/applications", status_code=HTTP_CREATED)
    async def submit_application(body: ApplicationSubmission):
        row = await workflow.submit(body.user_id, body.form)
        return {"success": True, "application": row}

    @router.get("/applications")
    async def list_applications(category: str = Query("all"), user_id: Optional[str] = Query(None)):
        _check_category(category)
        apps = await workflow.list_applications(category, user_id=user_id)
        return {"applications": [app.to_dict() for app in apps], "total": len(apps)}

    @router.get("/applications/export.csv")
    async def export_applications(category: str = Query("all")):
        _check_category(category)
        apps = await workflow.list_applications(category)
        try:
            content = export_applications_to_csv(apps)
        except ValueError as e:
            raise NotFoundError(str(e))
        filename = export_filename(f"{category}-applications")
        return Response(content, media_type="text/csv; charset=utf-8",
                        headers={"Content-Disposition": f'attachment; filename="{filename}"'})

    @router.get("/applications/{application_type}/eligibility")
    async def application_eligibility(application_type: str, user_id: str = Query(...)):
        eligibility = await workflow.gate.evaluate(application_type, user_id)
        return eligibility.to_dict()

    @router.patch("/applications/{application_type}/{application_id}/status")
    async def update_application_status(application_type: str, application_id: str, body: StatusUpdateRequest):
        reviewer = Reviewer(name=body.reviewer_name, discord_id=body.reviewer_discord_id)
        result = await workflow.update_status(application_type, application_id, body.status, reviewer,
                                              body.admin_notes)
        return result.to_dict()

    # ---------- Tickets ----------

    @router.post("/tickets", status_code=HTTP_CREATED)
    async def create_ticket(body: TicketCreateRequest):
        form = body.model_dump(exclude={"user_id"}, exclude_none=True)
        result = await tickets.create_ticket(body.user_id, form)
        return result.to_dict()

    @router.get("/tickets")
    async def list_tickets(status: Optional[str] = Query(None), user_id: Optional[str] = Query(None)):
        rows = await tickets.list_tickets(status=status, user_id=user_id)
        return {"tickets": rows, "total": len(rows)}

    @router.patch("/tickets/{ticket_id}/status")
    async def update_ticket_status(ticket_id: str, body: TicketStatusRequest):
        result = await tickets.update_status(ticket_id, body.status, resolved_by=body.resolved_by,
                                             admin_notes=body.admin_notes, resolution=body.resolution)
        return result.to_dict()

    app.include_router(router)
    return app
