import logging
import socket
import threading
import time
from datetime import datetime
from typing import Callable, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from media_transfer.api import auth
from media_transfer.api.routers import status, tus
from media_transfer.core.config import Settings
from media_transfer.core.errors import TransferError
from media_transfer.core.network import bind_first_available, local_ip_address
from media_transfer.core.security import AccessGate
from media_transfer.services.cleanup_service import CleanupScheduler, setup_cleanup_tasks
from media_transfer.services.events import EventBus, IndexingNotifier, TransferActivity
from media_transfer.services.locks import SessionLocks
from media_transfer.services.reconciler import OrphanReconciler
from media_transfer.services.session_store import UploadSessionStore
from media_transfer.services.storage import FileSystemStorage, StorageBackend
from media_transfer.services.upload_service import TUS_VERSION, UploadService
from media_transfer.services.validation import FileValidator
from media_transfer.utils.clock import utcnow

logger = logging.getLogger("server")

STARTUP_TIMEOUT_SECONDS = 10.0


def build_app(
    settings: Settings,
    clock: Callable[[], datetime] = utcnow,
    index_sink: Optional[Callable[[str], None]] = None,
    store: Optional[UploadSessionStore] = None,
    storage: Optional[StorageBackend] = None,
    events: Optional[EventBus] = None,
    access_gate: Optional[AccessGate] = None,
) -> FastAPI:
    """
    Assemble the FastAPI application and its collaborators.

    Everything the routes need hangs off ``app.state`` so tests can build
    as many independent apps as they like. Collaborators not passed in are
    built from ``settings``.
    """
    app = FastAPI(title=settings.PROJECT_NAME)

    store = store or UploadSessionStore.from_url(settings.database_url, clock=clock)
    storage = storage or FileSystemStorage(settings.MEDIA_DIR)
    locks = SessionLocks()
    events = events or EventBus()
    validator = FileValidator(
        settings.ALLOWED_EXTENSIONS,
        settings.ALLOWED_MIME_TYPES,
        max_upload_size=settings.MAX_UPLOAD_SIZE,
        min_free_space=settings.MIN_FREE_SPACE_BYTES,
    )
    upload_service = UploadService(
        store,
        storage,
        events,
        validator,
        locks=locks,
        active_idle_seconds=settings.ACTIVE_UPLOAD_IDLE_SECONDS,
        verify_signature=settings.VERIFY_CONTENT_SIGNATURE,
    )
    reconciler = OrphanReconciler(store, storage, locks, events=events)
    scheduler = CleanupScheduler(
        store,
        storage,
        reconciler,
        locks,
        ttl_seconds=settings.SESSION_TTL_SECONDS,
        interval_seconds=settings.CLEANUP_INTERVAL_SECONDS,
        events=events,
    )

    if access_gate is None:
        access_gate = AccessGate(pin=settings.UPLOAD_PIN, enabled=settings.PIN_ENABLED)
    if settings.PIN_ENABLED and not access_gate.enabled:
        pin = access_gate.rotate()
        logger.info(f"Generated upload PIN: {pin}")

    activity = TransferActivity()
    events.subscribe(activity)
    events.subscribe(IndexingNotifier(index_sink))

    app.state.settings = settings
    app.state.upload_service = upload_service
    app.state.storage = storage
    app.state.events = events
    app.state.access_gate = access_gate
    app.state.scheduler = scheduler
    app.state.activity = activity

    @app.exception_handler(TransferError)
    async def transfer_error_handler(request: Request, exc: TransferError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        headers = {"Tus-Resumable": TUS_VERSION}
        if exc.retryable:
            headers["Retry-After"] = "5"
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)

    # Include routers
    app.include_router(tus.router)
    app.include_router(status.router, prefix="/api")
    app.include_router(auth.router, prefix="/api")

    if settings.STATIC_DIR is not None and settings.STATIC_DIR.is_dir():
        app.mount("/", StaticFiles(directory=settings.STATIC_DIR, html=True), name="static")

    # Set up background cleanup tasks
    if settings.CLEANUP_ENABLED:
        setup_cleanup_tasks(app, scheduler)

    return app


class TransferServer:
    """
    Runs the upload app on the first free port out of the configured list.

    ``start()`` serves from a background thread and returns the bound port;
    ``run()`` serves in the foreground.
    """

    def __init__(self, settings: Settings, app: Optional[FastAPI] = None, **components):
        self.settings = settings
        self.app = app or build_app(settings, **components)
        self.active_port: Optional[int] = None
        self._server: Optional[uvicorn.Server] = None
        self._thread: Optional[threading.Thread] = None
        self._sock: Optional[socket.socket] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "TransferServer":
        return cls(settings)

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def advertised_url(self) -> Optional[str]:
        if self.active_port is None:
            return None
        return f"http://{local_ip_address()}:{self.active_port}"

    def _prepare(self):
        sock, port = bind_first_available(self.settings.HOST, self.settings.candidate_ports)
        config = uvicorn.Config(self.app, log_level=self.settings.LOG_LEVEL.lower())
        self._server = uvicorn.Server(config)
        self.active_port = port
        self._sock = sock
        return sock

    def start(self) -> int:
        if self.is_alive:
            return self.active_port

        sock = self._prepare()
        server = self._server
        self._thread = threading.Thread(target=server.run, kwargs={"sockets": [sock]}, daemon=True)
        self._thread.start()

        deadline = time.monotonic() + STARTUP_TIMEOUT_SECONDS
        while not server.started:
            if not self._thread.is_alive() or time.monotonic() > deadline:
                self._close(sock)
                raise RuntimeError(f"Server failed to start on port {self.active_port}")
            time.sleep(0.05)

        logger.info(f"Upload server listening on port {self.active_port} ({self.advertised_url()})")
        return self.active_port

    def run(self) -> None:
        sock = self._prepare()
        logger.info(f"Upload server listening on port {self.active_port} ({self.advertised_url()})")
        try:
            self._server.run(sockets=[sock])
        finally:
            self._close(sock)
            self.active_port = None

    def stop(self, timeout: float = 5.0) -> None:
        if self._server is not None:
            self._server.should_exit = True
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning("Upload server did not stop in time")
            self._thread = None
        if self._sock is not None:
            self._close(self._sock)
            self._sock = None
        self._server = None
        self.active_port = None
        logger.info("Upload server stopped")

    @staticmethod
    def _close(sock: socket.socket) -> None:
        try:
            sock.close()
        except OSError as e:
            logger.warning(f"Error closing listening socket: {e}")
