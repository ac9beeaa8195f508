import uuid
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from docrag.api import chat, documents
from docrag.core.database import init_db
from docrag.utils.logger import init_logging, get_logger, set_request_id, clear_request_id

# Initialize logging
init_logging()
logger = get_logger("docrag.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    logger.info("Database tables created")
    logger.info("Server started")
    yield
    logger.info("Server shutting down")


app = FastAPI(
    title="Document RAG Service",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Chat-Id", "X-Request-Id"],
)

# Request ID middleware; reuses the gateway's id when one is forwarded
@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or uuid.uuid4().hex[:8]
    set_request_id(request_id)
    logger.info("Request started", extra={
        "method": request.method,
        "path": request.url.path,
    })
    try:
        response = await call_next(request)
        logger.info("Request completed", extra={"status_code": response.status_code})
        response.headers["X-Request-Id"] = request_id
        return response
    except Exception as e:
        logger.error("Request failed", extra={"error": str(e)})
        raise
    finally:
        clear_request_id()

# Routes
app.include_router(documents.router)
app.include_router(chat.router)


@app.get("/health")
async def health():
    return {"status": "ok"}
