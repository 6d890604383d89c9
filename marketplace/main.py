from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Header, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from marketplace import config
from marketplace.database import Base, engine, get_db
from marketplace.errors import Internal, InvalidInput, MarketplaceError
from marketplace.log import configure_logging, get_logger
from marketplace.routes import cart_router, order_router, payment_router, product_router
from marketplace.stripe_service import verify_event
from marketplace.webhooks import handle_event

configure_logging()
log = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if not config.STRIPE_WEBHOOK_SECRET:
        raise RuntimeError("STRIPE_WEBHOOK_SECRET is not set. Check your .env file.")
    Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(title="Marketplace API", lifespan=lifespan)

app.include_router(product_router)
app.include_router(cart_router)
app.include_router(order_router)
app.include_router(payment_router)


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    if exc.status_code >= 500:
        log.error("request_failed", path=request.url.path, detail=exc.message, cause=repr(exc.__cause__))
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "errors": exc.errors},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    log.error("request_failed", path=request.url.path, exc_info=exc)
    error = Internal()
    return JSONResponse(
        status_code=error.status_code,
        content={"detail": error.message, "errors": error.errors},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(part) for part in error["loc"][1:]), "message": error["msg"]}
        for error in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"detail": "Invalid request", "errors": errors})


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/api/payment/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(None),
    db: Session = Depends(get_db),
):
    if not stripe_signature:
        raise InvalidInput("Missing stripe-signature header")
    payload = await request.body()

    event = verify_event(payload, stripe_signature, config.STRIPE_WEBHOOK_SECRET)

    try:
        await run_in_threadpool(handle_event, db, event)
    except Exception as exc:
        raise Internal("Error processing webhook event") from exc

    return {"received": True}
