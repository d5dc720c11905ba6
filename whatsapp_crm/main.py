import logging

from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from whatsapp_crm.config import settings
from whatsapp_crm.db.mongo_connection import close_db, ensure_indexes, get_db
from whatsapp_crm.providers.messaging import build_provider
from whatsapp_crm.realtime.gateway import socket_app, get_connection_stats
from whatsapp_crm.routes.accounts import accounts_router
from whatsapp_crm.routes.messages import messages_router
from whatsapp_crm.routes.tickets import tickets_router
from whatsapp_crm.routes.webhook import webhook_router
from whatsapp_crm.services.errors import CRMError
from whatsapp_crm.workers.dispatch_worker import DispatchWorker

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="WhatsApp CRM",
    description="Multi-tenant WhatsApp inbox: webhook ingestion, ticket funnel and queued outbound delivery.",
    version="0.1.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(CRMError)
async def crm_exception_handler(request: Request, exc: CRMError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": str(exc)},
    )


app.include_router(webhook_router)
app.include_router(messages_router)
app.include_router(tickets_router)
app.include_router(accounts_router)

# Socket.IO clients connect with path "/ws/socket.io"
app.mount("/ws", socket_app)


@app.get("/")
async def home():
    return JSONResponse(content={"message": "WhatsApp CRM backend is running!", "realtime": get_connection_stats()})


@app.on_event("startup")
async def startup_event():
    get_db()
    await ensure_indexes()

    if settings.DISPATCH_WORKER_ENABLED:
        worker = DispatchWorker(build_provider())
        await worker.start()
        app.state.dispatch_worker = worker
        logger.info("Dispatch worker started with provider %s", settings.MESSAGING_PROVIDER)


@app.on_event("shutdown")
async def shutdown_event():
    worker = getattr(app.state, "dispatch_worker", None)
    if worker is not None:
        await worker.stop()
    close_db()
