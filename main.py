# main.py
import hmac
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

import config
from clock import iso, utcnow
from codes import issue_code, list_slots, revoke_code
from db import SessionLocal, engine, init_db
from errors import Internal, RedeemError
from leases import LeaseService
from mail_client import MailLookupClient
from redemption import RedemptionEngine
from schemas import (
    ClaimIn,
    ClaimOut,
    CodeIn,
    GenCodeIn,
    LeaseOut,
    MailCodeOut,
    RefreshOut,
    TimeCodeOut,
)
from store import Store, StoreError

logging.basicConfig(level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db(engine)
    yield


app = FastAPI(title="OOR Redeem Service", version="1.0.0", lifespan=lifespan)


@app.exception_handler(RedeemError)
async def redeem_error_handler(request: Request, exc: RedeemError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.code, "message": exc.message},
    )


# --------------------------------------------------------------------
# Wiring
# --------------------------------------------------------------------

_store = Store(SessionLocal)


def get_store() -> Store:
    return _store


def get_mail_client() -> MailLookupClient:
    return MailLookupClient(
        config.MAIL_LOOKUP_URL,
        api_key=config.MAIL_LOOKUP_API_KEY,
        timeout=config.MAIL_LOOKUP_TIMEOUT,
    )


def get_redeemer(store: Store = Depends(get_store)) -> RedemptionEngine:
    return RedemptionEngine(store)


def get_leases(
    store: Store = Depends(get_store),
    mail_client: MailLookupClient = Depends(get_mail_client),
) -> LeaseService:
    return LeaseService(store, mail_client=mail_client)


class SharedSecretPolicy:
    """Admin check: the X-ADMIN-KEY header must equal the configured key."""

    def __init__(self, secret: str | None):
        self._secret = secret

    @property
    def configured(self) -> bool:
        return bool(self._secret)

    def allows(self, presented: str | None) -> bool:
        if not self._secret or presented is None:
            return False
        return hmac.compare_digest(presented.encode(), self._secret.encode())


def get_admin_policy() -> SharedSecretPolicy:
    return SharedSecretPolicy(config.ADMIN_KEY)


def require_admin(
    x_admin_key: str | None = Header(None),
    policy: SharedSecretPolicy = Depends(get_admin_policy),
):
    if not policy.configured:
        # If you forget to set it, block admin completely
        raise HTTPException(status_code=500, detail="admin_key_not_configured")
    if not policy.allows(x_admin_key):
        raise HTTPException(status_code=401, detail="unauthorized")


# --------------------------------------------------------------------
# Health check
# --------------------------------------------------------------------

@app.get("/health")
def health():
    return {"status": "ok", "time": iso(utcnow())}


# --------------------------------------------------------------------
# Public: redeem a code and work with the resulting lease
# --------------------------------------------------------------------

@app.post("/user/claim", response_model=ClaimOut)
def claim(body: ClaimIn, redeemer: RedemptionEngine = Depends(get_redeemer),
          leases: LeaseService = Depends(get_leases)):
    result = redeemer.claim(body.code, body.user_id)
    try:
        view = leases.project(result.lease)
    except (SQLAlchemyError, StoreError):
        logger.exception("Error rendering lease %s", result.lease.code)
        raise Internal()
    return ClaimOut(**view.model_dump(), outcome=result.outcome.value, assigned=result.assigned)


@app.post("/user/login", response_model=LeaseOut)
def login(body: CodeIn, leases: LeaseService = Depends(get_leases)):
    return leases.view(body.code)


@app.post("/user/refresh", response_model=RefreshOut)
def refresh(body: CodeIn, leases: LeaseService = Depends(get_leases)):
    result = leases.refresh(body.code)
    return RefreshOut(changed=result.changed, last_email=result.email, last_password=result.password)


@app.post("/user/otp", response_model=TimeCodeOut)
def otp(body: CodeIn, leases: LeaseService = Depends(get_leases)):
    code, remaining = leases.time_code(body.code)
    return TimeCodeOut(otp=code, remaining=remaining)


@app.post("/user/mail-code", response_model=MailCodeOut)
def mail_code(body: CodeIn, leases: LeaseService = Depends(get_leases)):
    return MailCodeOut(mail_code=leases.fetch_mail_code(body.code))


# --------------------------------------------------------------------
# Admin
# --------------------------------------------------------------------

@app.get("/admin/slots", dependencies=[Depends(require_admin)])
def admin_slots(store: Store = Depends(get_store)):
    try:
        return {"success": True, "slots": list_slots(store)}
    except (SQLAlchemyError, StoreError):
        logger.exception("Error in /admin/slots")
        raise Internal()


@app.post("/admin/gen-code", dependencies=[Depends(require_admin)])
def admin_gen_code(body: GenCodeIn, store: Store = Depends(get_store)):
    try:
        promo = issue_code(store, body)
    except (SQLAlchemyError, StoreError):
        logger.exception("Error in /admin/gen-code")
        raise Internal()
    return {"success": True, "promo": promo.model_dump()}


@app.post("/admin/codes/{code}/revoke", dependencies=[Depends(require_admin)])
def admin_revoke(code: str, store: Store = Depends(get_store)):
    try:
        promo = revoke_code(store, code)
    except (SQLAlchemyError, StoreError):
        logger.exception("Error revoking %s", code)
        raise Internal()
    return {"success": True, "promo": promo.model_dump()}


@app.post("/admin/transactions/{code}/hide", dependencies=[Depends(require_admin)])
def admin_hide(code: str, leases: LeaseService = Depends(get_leases)):
    leases.hide(code)
    return {"success": True}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=config.PORT)
