import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import config
from errors import PipelineError
from routers.generation import router

# --------------------------------------------------------------------------
# --- Configuration & Setup ---
# --------------------------------------------------------------------------

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")

app = FastAPI(
    title="Manim Math Narrator",
    description="Turns a math topic into a narrated Manim animation.",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)


# --------------------------------------------------------------------------
# --- Exception Handlers ---
# --------------------------------------------------------------------------

@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError):
    logging.error(f"❌ {request.method} {request.url.path} failed ({exc.status_code}): {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    problems = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        problems.append(f"{field}: {error.get('msg')}" if field else error.get("msg", "invalid request"))
    return JSONResponse(status_code=400, content={"success": False, "error": "; ".join(problems)})


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    logging.error(f"❌ Unhandled error on {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"success": False, "error": str(exc) or "Internal server error"})
