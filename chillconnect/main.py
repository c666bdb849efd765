"""ChillConnect - FastAPI application."""
# Load .env before any app code that might read config
from dotenv import load_dotenv
from pathlib import Path
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chillconnect.config import get_settings
from chillconnect.database import Base, engine
# Import models so Base.metadata has all tables before create_all (schema source of truth)
from chillconnect.models import (  # noqa: F401
    User, UserProfile, TokenWallet, TokenTransaction, Booking, OTP, Message,
    Verification, Assignment, RoundRobinCounter, Dispute, Rating,
    PaymentMethod, WithdrawalRequest, AuditLog, SupportTicket, TicketMessage,
)
from chillconnect.routers import admin, auth, bookings, chat, disputes, ratings, support, tokens, users, withdrawals
from chillconnect.services.bookings import BookingError
from chillconnect.services.chat import ChatError
from chillconnect.services.ledger import InsufficientTokens, LedgerError

settings = get_settings()
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("chillconnect")

app = FastAPI(title=settings.app_name, debug=settings.debug)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(users.router)
app.include_router(tokens.router)
app.include_router(bookings.router)
app.include_router(chat.router)
app.include_router(chat.ws_router)
app.include_router(disputes.router)
app.include_router(ratings.router)
app.include_router(withdrawals.router)
app.include_router(support.router)
app.include_router(admin.router)


@app.exception_handler(LedgerError)
def ledger_error_handler(request: Request, exc: LedgerError):
    content = {"detail": exc.message}
    if isinstance(exc, InsufficientTokens):
        content.update(required=exc.required, available=exc.available)
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(BookingError)
def booking_error_handler(request: Request, exc: BookingError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(ChatError)
def chat_error_handler(request: Request, exc: ChatError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


scheduler = None


@app.on_event("startup")
def startup():
    global scheduler
    if not (settings.mailgun_api_key and settings.mailgun_domain):
        logger.warning("Mailgun not configured - emails (including OTPs) will be skipped")
    if not (settings.twilio_account_sid and settings.twilio_auth_token):
        logger.warning("Twilio not configured - SMS OTPs will be skipped")
    try:
        Base.metadata.create_all(bind=engine)
    except Exception as e:
        logger.warning("Database startup failed (tables skipped). Check DATABASE_URL. Error: %s", e)

    if settings.booking_expiry_job_enabled:
        from apscheduler.schedulers.background import BackgroundScheduler
        from chillconnect.jobs import run_maintenance_jobs
        scheduler = BackgroundScheduler()
        scheduler.add_job(
            run_maintenance_jobs, "interval", minutes=settings.booking_expiry_interval_minutes, id="maintenance",
        )
        scheduler.start()
        logger.info("Scheduler started: maintenance every %s minutes", settings.booking_expiry_interval_minutes)


@app.on_event("shutdown")
def shutdown():
    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=False)


@app.get("/")
def root():
    return {"app": settings.app_name, "status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}
