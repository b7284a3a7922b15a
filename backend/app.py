import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from backend import storage
from backend.narrative import NarrativeError
from backend.routes import router
from story_weaver.llm import LLMError
from story_weaver.prompts import PromptError

load_dotenv(Path(__file__).parent.parent / ".env")

DEFAULT_DATA_DIR = Path(__file__).parent.parent / "data"
AI_UNAVAILABLE = "AI service is temporarily unavailable, please try again later"

logger = logging.getLogger(__name__)


def _error(status: int, message: str) -> JSONResponse:
    return JSONResponse({"success": False, "error": message}, status_code=status)


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        problems = []
        for err in exc.errors():
            loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
            problems.append(f"{loc}: {err.get('msg', 'invalid')}" if loc else err.get("msg", "invalid"))
        return _error(400, "; ".join(problems) or "Invalid request")

    @app.exception_handler(NarrativeError)
    async def narrative_error(request: Request, exc: NarrativeError):
        return _error(exc.status_code, str(exc))

    @app.exception_handler(LLMError)
    async def llm_error(request: Request, exc: LLMError):
        logger.warning("LLM failure on %s: %s", request.url.path, exc)
        return _error(502, AI_UNAVAILABLE)

    @app.exception_handler(PromptError)
    async def prompt_error(request: Request, exc: PromptError):
        logger.error("Prompt rendering failed on %s: %s", request.url.path, exc)
        return _error(500, "Could not build the story prompt")


def create_app(data_dir: Path | None = None) -> FastAPI:
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
    resolved = data_dir or Path(os.getenv("DATA_DIR", str(DEFAULT_DATA_DIR)))
    storage.init_storage(resolved)

    app = FastAPI(title="Story Weaver")
    _install_error_handlers(app)
    app.include_router(router, prefix="/api")
    return app


# Default app instance for uvicorn (uses DATA_DIR env var or default)
app = create_app()
