from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .errors import SchedulingError, Unauthenticated


async def scheduling_error_handler(request: Request, exc: SchedulingError):
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthenticated) else None
    content = {"detail": exc.message}
    conflicting_ids = getattr(exc, "conflicting_ids", None)
    if conflicting_ids:
        content["conflicting_ids"] = conflicting_ids
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": jsonable_encoder(exc.errors())},
    )


def create_app() -> FastAPI:
    app = FastAPI(title="Clinic Scheduling")

    app.add_exception_handler(SchedulingError, scheduling_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    from .routes import router as main_router
    app.include_router(main_router)

    return app
