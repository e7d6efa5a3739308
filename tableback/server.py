"""FastAPI server exposing the automation engine and the WhatsApp webhook."""

import asyncio
import logging
from contextlib import asynccontextmanager, suppress

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from twilio.request_validator import RequestValidator
from twilio.twiml.messaging_response import MessagingResponse

from tableback.config import Config, get_config, setup_logging
from tableback.models import (
    AutomationSettings,
    NewReservation,
    NewWaitlistEntry,
    Notification,
    ReminderSettings,
    Reservation,
    WaitlistEntry,
)
from tableback.phone import normalize_phone
from tableback.services import (
    AutomationEngine,
    EngineSnapshot,
    EntityNotFoundError,
    ReplyLedger,
    TwilioWhatsAppGateway,
)
from tableback.services.clock import utc_now
from tableback.services.reply_classifier import record_inbound_reply

logger = logging.getLogger(__name__)


async def run_tick_loop(engine: AutomationEngine, interval_seconds: float) -> None:
    """Advance the engine clock forever.

    Ticks run in a worker thread because the Twilio client blocks.
    """
    while True:
        try:
            await asyncio.to_thread(engine.advance_time)
        except Exception:
            logger.exception("Engine tick failed")
        await asyncio.sleep(interval_seconds)


def create_app(
    config: Config | None = None,
    engine: AutomationEngine | None = None,
    start_ticker: bool = True,
) -> FastAPI:
    """Build the API application.

    Args:
        config: Application configuration (global config if omitted)
        engine: Pre-built engine; one backed by Twilio is created if omitted
        start_ticker: Whether to run the background tick loop

    Returns:
        Configured FastAPI application
    """
    cfg = config or get_config()

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        """Application lifespan manager."""
        nonlocal engine
        logger.info(f"Starting Tableback server on {cfg.server_host}:{cfg.server_port}")

        if engine is None:
            ledger = ReplyLedger(cfg.ledger_path or None)
            gateway = TwilioWhatsAppGateway(ledger, cfg)
            engine = AutomationEngine.from_config(cfg, gateway, ledger)
            logger.info("✓ Automation engine initialized")

        _app.state.config = cfg
        _app.state.engine = engine
        _app.state.ledger = engine.context.ledger

        ticker = None
        if start_ticker:
            ticker = asyncio.create_task(run_tick_loop(engine, cfg.tick_interval_seconds))
            logger.info(f"✓ Tick loop running every {cfg.tick_interval_seconds}s")

        yield

        if ticker is not None:
            ticker.cancel()
            with suppress(asyncio.CancelledError):
                await ticker
        logger.info("Shutting down Tableback server")

    app = FastAPI(
        title="Tableback API",
        description="Reservation reminders, no-show detection and waitlist automation",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_routes(app)
    return app


def get_engine(request: Request) -> AutomationEngine:
    """Dependency to get the automation engine from app state.

    Raises:
        HTTPException: If the engine is not initialized
    """
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not initialized yet")
    return engine


def get_ledger(request: Request) -> ReplyLedger:
    ledger = getattr(request.app.state, "ledger", None)
    if ledger is None:
        raise HTTPException(status_code=503, detail="Reply ledger not initialized yet")
    return ledger


def _signature_urls(request: Request, cfg: Config) -> list[str]:
    """URLs Twilio may have signed, depending on proxies in between."""
    urls = [str(request.url)]
    if cfg.twilio_webhook_url:
        urls.append(cfg.twilio_webhook_url.strip())
    host = request.headers.get("x-forwarded-host") or request.headers.get("host")
    proto = request.headers.get("x-forwarded-proto", "https")
    if host:
        query = f"?{request.url.query}" if request.url.query else ""
        urls.append(f"{proto}://{host}{request.url.path}{query}")
    return list(dict.fromkeys(urls))


def _register_routes(app: FastAPI) -> None:
    @app.get("/health")
    async def health_check():
        """Health check endpoint for monitoring."""
        return {"status": "healthy", "service": "tableback-api"}

    @app.get("/state", response_model=EngineSnapshot)
    def get_state(engine: AutomationEngine = Depends(get_engine)):
        """Full snapshot of reservations, waitlist and settings."""
        return engine.snapshot()

    @app.post("/reservations", response_model=Reservation, status_code=201)
    def add_reservation(
        entry: NewReservation, engine: AutomationEngine = Depends(get_engine)
    ):
        return engine.add_reservation(entry).model_copy()

    @app.delete("/reservations/{reservation_id}", response_model=Reservation)
    def remove_reservation(
        reservation_id: str, engine: AutomationEngine = Depends(get_engine)
    ):
        try:
            return engine.remove_reservation(reservation_id)
        except EntityNotFoundError:
            raise HTTPException(status_code=404, detail="Reservation not found") from None

    @app.delete("/reservations")
    def clear_reservations(engine: AutomationEngine = Depends(get_engine)):
        return {"removed": engine.clear_reservations()}

    @app.post("/waitlist", response_model=WaitlistEntry, status_code=201)
    def add_waitlist_entry(
        entry: NewWaitlistEntry, engine: AutomationEngine = Depends(get_engine)
    ):
        return engine.add_waitlist_entry(entry).model_copy()

    @app.delete("/waitlist/{entry_id}", response_model=WaitlistEntry)
    def remove_waitlist_entry(
        entry_id: str, engine: AutomationEngine = Depends(get_engine)
    ):
        try:
            return engine.remove_waitlist_entry(entry_id)
        except EntityNotFoundError:
            raise HTTPException(status_code=404, detail="Waitlist entry not found") from None

    @app.post("/waitlist/{entry_id}/contact")
    def contact_waitlist_entry(
        entry_id: str, engine: AutomationEngine = Depends(get_engine)
    ):
        """Offer an open table to a waitlist guest."""
        try:
            reservation = engine.contact_waitlist_entry(entry_id)
        except EntityNotFoundError:
            raise HTTPException(status_code=404, detail="Waitlist entry not found") from None

        return {
            "offered": reservation is not None,
            "reservation": reservation.model_dump(mode="json") if reservation else None,
        }

    @app.get("/settings")
    def get_settings(engine: AutomationEngine = Depends(get_engine)):
        snapshot = engine.snapshot()
        return {
            "reminders": snapshot.reminder_settings,
            "automation": snapshot.automation_settings,
        }

    @app.put("/settings/reminders", response_model=ReminderSettings)
    def update_reminder_settings(
        settings: ReminderSettings, engine: AutomationEngine = Depends(get_engine)
    ):
        engine.update_reminder_settings(settings)
        return settings

    @app.put("/settings/automation", response_model=AutomationSettings)
    def update_automation_settings(
        settings: AutomationSettings, engine: AutomationEngine = Depends(get_engine)
    ):
        engine.update_automation_settings(settings)
        return settings

    @app.get("/notifications", response_model=list[Notification])
    def get_notifications(engine: AutomationEngine = Depends(get_engine)):
        return engine.notifications

    @app.get("/whatsapp/confirmation")
    def get_confirmation(
        phone: str = Query(..., description="Guest phone number"),
        ledger: ReplyLedger = Depends(get_ledger),
    ):
        """Latest classified reply for a phone number."""
        normalized = normalize_phone(phone)
        if not normalized:
            raise HTTPException(status_code=400, detail="Missing phone query parameter")

        record = ledger.get(normalized)
        return {
            "ok": True,
            "confirmed": record.confirmed if record else False,
            "declined": record.declined if record else False,
            "last_reply": record.last_reply if record else None,
            "updated_at": record.updated_at.isoformat() if record else None,
        }

    @app.post("/whatsapp/webhook")
    async def whatsapp_webhook(
        request: Request, ledger: ReplyLedger = Depends(get_ledger)
    ):
        """Handle inbound WhatsApp messages from Twilio.

        The request signature is checked against every URL Twilio may have
        signed. The reply is classified, stored in the reply ledger and
        answered with TwiML.
        """
        cfg: Config = request.app.state.config
        if not cfg.twilio_auth_token:
            logger.error("TWILIO_AUTH_TOKEN not configured - cannot validate webhook")
            raise HTTPException(
                status_code=500, detail="TWILIO_AUTH_TOKEN missing for webhook validation"
            )

        signature = request.headers.get("x-twilio-signature", "").strip()
        if not signature:
            raise HTTPException(status_code=403, detail="Missing Twilio signature")

        form_data = await request.form()
        params = {key: value for key, value in form_data.items() if isinstance(value, str)}

        validator = RequestValidator(cfg.twilio_auth_token)
        if not any(
            validator.validate(url, params, signature)
            for url in _signature_urls(request, cfg)
        ):
            logger.warning("Rejected webhook with invalid Twilio signature")
            raise HTTPException(status_code=403, detail="Invalid Twilio signature")

        sender = normalize_phone(params.get("From", ""))
        body = params.get("Body", "").strip()

        twiml = MessagingResponse()
        if sender:
            reply_text = record_inbound_reply(ledger, sender, body, utc_now())
            twiml.message(reply_text)
        else:
            logger.warning("Inbound message without sender")

        return Response(content=str(twiml), media_type="text/xml")


app = create_app()


def run_server():
    """Run the FastAPI server using uvicorn.

    This is the main entry point for the server.
    """
    setup_logging()
    config = get_config()

    uvicorn.run(
        "tableback.server:app",
        host=config.server_host,
        port=config.server_port,
        log_level=config.log_level.lower(),
        reload=False,
    )


if __name__ == "__main__":
    run_server()
