import logging
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request

from config import AppConfig
from dal.event_journal_dal import EventJournalDAL
from routes.overlay_ws import router as overlay_ws_router
from routes.runtime_ws import router as runtime_ws_router
from routes.session_route import router as session_router
from services.runtime.command_dispatcher import CommandDispatcher
from services.runtime.overlay_surface import OverlaySurface
from services.runtime.runtime_channel import RuntimeChannel
from services.session.layout import LayoutScheduler
from services.session.reconciler import EventReconciler
from services.session.session_store import SessionStore
from utils.database_init import AsyncDatabaseInitializer

load_dotenv()  # Load environment variables from .env file if present

logger = logging.getLogger(__name__)


def create_app(config: Optional[AppConfig] = None) -> FastAPI:
    """
    Create and configure the FastAPI application instance.

    The session store, reconciler, layout scheduler, runtime channel and overlay
    surface are built in the lifespan and attached to `app.state`.
    """
    app_config = config or AppConfig.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.basicConfig(
            level=app_config.log_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        store = SessionStore(
            use_agent_mode=app_config.use_agent_mode,
            use_agent_v2=app_config.use_agent_v2,
        )
        channel = RuntimeChannel(
            command_timeout=app_config.command_timeout,
            execution_timeout=app_config.execution_timeout,
        )
        surface = OverlaySurface(store)
        surface.attach()
        scheduler = LayoutScheduler(store, surface.resize, width=app_config.window_width)
        scheduler.attach()

        journal = None
        if app_config.journal_dir is not None:
            # This will delete any journal left by a previous run and start a fresh one.
            db_initializer = AsyncDatabaseInitializer(app_config.journal_dir)
            await db_initializer.ensure_database()
            journal = EventJournalDAL(db_initializer)
            logger.info("Journaling runtime events to %s", db_initializer.db_path)

        reconciler = EventReconciler(store, runtime=channel, layout=scheduler)
        dispatcher = CommandDispatcher(store, channel)

        app.state.config = app_config
        app.state.session_store = store
        app.state.runtime_channel = channel
        app.state.overlay_surface = surface
        app.state.layout_scheduler = scheduler
        app.state.reconciler = reconciler
        app.state.command_dispatcher = dispatcher
        app.state.event_journal = journal

        # Size the window for the idle state before any event arrives.
        await scheduler.flush()
        try:
            yield
        finally:
            scheduler.detach()
            surface.detach()

    app = FastAPI(lifespan=lifespan)

    @app.get("/health")
    async def health(request: Request):
        """
        Report runtime connectivity, overlay clients and journaling status.
        """
        state = request.app.state
        return {
            "ok": True,
            "runtime_connected": state.runtime_channel.connected,
            "overlay_clients": state.overlay_surface.client_count,
            "journal_enabled": state.event_journal is not None,
            "run_state": state.session_store.snapshot.run_state,
        }

    # Register application routers
    app.include_router(session_router)
    app.include_router(runtime_ws_router)
    app.include_router(overlay_ws_router)

    return app


app = create_app()
