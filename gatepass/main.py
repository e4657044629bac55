# =======================================================================================
# gatepass/main.py - FastAPI Application Entry Point
# =======================================================================================
import logging
import uvicorn
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from .config import config
from .api.routes.passes import router as passes_router
from .api.routes.gates import router as gates_router
from .database import DatabaseManager, db_manager
from .models.schemas import ErrorResponse, HealthResponse
from .services import (
    ApprovalEngine, AuditService, CredentialCodec, DirectoryService, ExpirySweeper, GateLedger,
    NotificationService, PassRegistry,
)
from .utils.clock import Clock, utcnow
from .utils.exceptions import GatePassError
from .workers import ExpiryWorker, OutboundDispatcher

logger = logging.getLogger(__name__)


class Services:
    """Wires the engine's components around one database and one outbound queue."""

    def __init__(
        self,
        db: DatabaseManager,
        secret: str,
        clock: Clock = utcnow,
        notifier: Optional[NotificationService] = None,
    ):
        self.db = db
        self.clock = clock
        self.dispatcher = OutboundDispatcher()
        self.audit = AuditService(db, clock)
        self.directory = DirectoryService()
        self.notifier = notifier or NotificationService()
        self.codec = CredentialCodec(secret, clock)
        self.registry = PassRegistry(db, self.directory, self.audit, self.dispatcher, clock)
        self.approvals = ApprovalEngine(
            self.codec, db, self.registry, self.directory, self.notifier, self.audit,
            self.dispatcher, clock,
        )
        self.ledger = GateLedger(
            self.codec, db, self.registry, self.directory, self.notifier, self.audit,
            self.dispatcher, clock,
        )
        self.sweeper = ExpirySweeper(db, self.audit, self.dispatcher, clock)
        self.expiry_worker = ExpiryWorker(self.sweeper)

    def start(self):
        self.dispatcher.start()
        self.expiry_worker.start()

    def stop(self):
        self.expiry_worker.stop()
        self.dispatcher.stop()


def configure_logging():
    level = "DEBUG" if config.API_DEBUG else config.LOG_LEVEL
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-8s %(name)s - %(message)s",
    )


def create_app(
    db: Optional[DatabaseManager] = None,
    secret: Optional[str] = None,
    clock: Clock = utcnow,
    notifier: Optional[NotificationService] = None,
    start_workers: bool = True,
) -> FastAPI:
    configure_logging()
    services = Services(db or db_manager, secret or config.QR_SECRET, clock, notifier)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if start_workers:
            services.start()
        logger.info("Gate Pass API started")
        yield
        if start_workers:
            services.stop()
        logger.info("Gate Pass API stopped")

    app = FastAPI(
        title="Gate Pass API",
        version="1.0.0",
        description="Pass approval, signed QR credentials and gate check-in/check-out",
        debug=config.API_DEBUG,
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(GatePassError)
    async def gatepass_error_handler(request: Request, exc: GatePassError):
        body = ErrorResponse(error=exc.code, message=exc.message, context=exc.context)
        return JSONResponse(status_code=exc.status_code, content=body.model_dump(mode="json"))

    # Routers
    app.include_router(passes_router, prefix="/api", tags=["passes"])
    app.include_router(gates_router, prefix="/api", tags=["gates"])

    @app.get("/api/health", response_model=HealthResponse, tags=["health"])
    def api_health():
        try:
            services.db.fetch_one("SELECT 1")
            return HealthResponse(status="ok", dataAvailable=True, message=None)
        except Exception as e:
            return HealthResponse(status="error", dataAvailable=False, message=str(e))

    return app


def run():
    uvicorn.run("gatepass.main:app", host=config.API_HOST, port=config.API_PORT)


app = create_app()
