from datetime import datetime, timezone
from typing import Any, Optional

import uvicorn
from fastapi import Body, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from persona_chat import __version__
from persona_chat.api.service import ChatService, create_default_service
from persona_chat.chat.channel import MEDIA_TYPE, encode_stream
from persona_chat.config.settings import settings
from persona_chat.domain.exceptions import BusinessError
from persona_chat.infrastructure.logging.logger import get_logger


log = get_logger("api")


def _error(status: int, code: str, message: str, details: str = "") -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content={"success": False, "error": {"code": code, "message": message, "details": details}},
    )


def create_app(service: Optional[ChatService] = None) -> FastAPI:
    app = FastAPI(title="Persona Chat API", version=__version__)
    app.state.service = service or create_default_service()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url, "http://localhost:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(BusinessError)
    async def business_error_handler(request: Request, exc: BusinessError) -> JSONResponse:
        log.warning(
            "Request rejected",
            extra={"extra": {"path": request.url.path, "code": exc.code, "status": exc.http_status}},
        )
        return JSONResponse(status_code=exc.http_status, content={"success": False, "error": exc.to_payload()})

    @app.exception_handler(RequestValidationError)
    async def invalid_json_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error(400, "INVALID_JSON", "Invalid JSON in request body", str(exc.errors()[:1]))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        log.error("Unhandled error", exc_info=exc, extra={"extra": {"path": request.url.path}})
        details = str(exc) if settings.environment == "development" else "Please try again later"
        return _error(500, "INTERNAL_SERVER_ERROR", "An unexpected error occurred", details)

    @app.get("/api/personas")
    def list_personas(request: Request) -> dict:
        return {"success": True, "data": request.app.state.service.list_personas()}

    @app.get("/api/personas/{persona_id}")
    def get_persona(request: Request, persona_id: str) -> dict:
        return {"success": True, "data": request.app.state.service.get_persona(persona_id)}

    @app.post("/api/chat/{persona_id}")
    def chat(request: Request, persona_id: str, body: Any = Body(default=None)) -> StreamingResponse:
        events = request.app.state.service.open_chat(persona_id, body)
        return StreamingResponse(
            encode_stream(events),
            media_type=MEDIA_TYPE,
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    @app.get("/api/health")
    def health() -> dict:
        return {
            "success": True,
            "data": {
                "status": "healthy",
                "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
                "version": __version__,
            },
        }

    return app


def run() -> None:
    uvicorn.run(create_app(), host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
