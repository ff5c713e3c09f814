"""Exception handlers for the FastAPI app."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from automation_engine.events_engine.store import EventNotFoundError
from automation_engine.services.notifications import InvalidTransitionError, NotificationNotFoundError
from automation_engine.services.rules import RuleNotFoundError, RuleServiceError


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(EventNotFoundError)
    async def event_not_found_handler(request: Request, exc: EventNotFoundError) -> JSONResponse:  # noqa: WPS430
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(RuleNotFoundError)
    async def rule_not_found_handler(request: Request, exc: RuleNotFoundError) -> JSONResponse:  # noqa: WPS430
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(NotificationNotFoundError)
    async def notification_not_found_handler(  # noqa: WPS430
        request: Request, exc: NotificationNotFoundError
    ) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(InvalidTransitionError)
    async def invalid_transition_handler(request: Request, exc: InvalidTransitionError) -> JSONResponse:  # noqa: WPS430
        return JSONResponse(
            status_code=409,
            content={"detail": str(exc), "status": exc.status.value, "action": exc.action},
        )

    @app.exception_handler(RuleServiceError)
    async def rule_service_handler(request: Request, exc: RuleServiceError) -> JSONResponse:  # noqa: WPS430
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:  # noqa: WPS430
        return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})
