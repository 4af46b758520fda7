from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings
from .container import ApplicationContainer
from .logging import configure_logging
from ..domain.errors import BillingError
from ..domain.pricing import PriceCatalog
from ..infrastructure.identity.jwt_identity import JwtIdentityProvider
from ..infrastructure.persistence.sqlite import SQLitePersistence
from ..presentation.api.routers import checkout as checkout_router
from ..presentation.api.routers import coupon as coupon_router
from ..presentation.api.routers import password_reset as password_reset_router
from ..presentation.api.routers import payment_method as payment_method_router
from ..presentation.api.routers import subscription as subscription_router
from ..presentation.api.routers import webhooks as webhooks_router
from ..services.billing_reconciler import BillingReconciler
from ..services.email_service import EmailService
from ..services.event_dispatcher import EventDispatcher, log_listener
from ..services.password_reset_service import PasswordResetService
from ..services.rate_limiter import TTLCache, build_rate_limiter
from ..services.stripe_service import StripeService
from ..services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)


def create_application(
    settings: Optional[Settings] = None,
    container: Optional[ApplicationContainer] = None,
) -> FastAPI:
    settings = settings or Settings()

    app = FastAPI(title="SiteCare Billing", lifespan=_create_lifespan(settings, container))

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(checkout_router.router)
    app.include_router(subscription_router.router)
    app.include_router(coupon_router.router)
    app.include_router(payment_method_router.router)
    app.include_router(webhooks_router.router)
    app.include_router(password_reset_router.router)

    @app.exception_handler(BillingError)
    async def billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        message = "Invalid request."
        if errors:
            location = ".".join(str(part) for part in errors[0].get("loc", ())[1:])
            message = f"{location}: {errors[0].get('msg')}" if location else str(errors[0].get("msg"))
        return JSONResponse(status_code=400, content={"success": False, "error": message})

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        container: ApplicationContainer = app.state.container  # type: ignore[attr-defined]
        return {"ok": True, "stripe": container.stripe_service.is_configured()}

    return app


def build_container(
    settings: Settings,
    persistence: Optional[SQLitePersistence] = None,
    stripe_service: Optional[StripeService] = None,
    email_service: Optional[EmailService] = None,
) -> ApplicationContainer:
    persistence = persistence or SQLitePersistence(settings.database_path)
    stripe_service = stripe_service or StripeService(
        secret_key=settings.stripe_secret_key,
        webhook_secret=settings.stripe_webhook_secret,
        api_version=settings.stripe_api_version,
    )
    email_service = email_service or EmailService(
        smtp_host=settings.smtp_host,
        smtp_port=settings.smtp_port,
        smtp_username=settings.smtp_username,
        smtp_password=settings.smtp_password,
        from_email=settings.smtp_from_email,
        console_mode=settings.password_reset_email_mode == "console",
    )
    dispatcher = EventDispatcher()
    dispatcher.add_listener(log_listener)

    catalog = PriceCatalog(settings.stripe_price_ids)
    identity = JwtIdentityProvider(
        users=persistence,
        secret=settings.identity_token_secret,
        algorithm=settings.identity_token_algorithm,
        audience=settings.identity_token_audience,
    )
    subscription_service = SubscriptionService(
        accounts=persistence,
        billing=stripe_service,
        catalog=catalog,
        dispatcher=dispatcher,
        app_base_url=settings.app_base_url,
    )
    reconciler = BillingReconciler(
        accounts=persistence,
        billing=stripe_service,
        catalog=catalog,
        processed_events=TTLCache(settings.webhook_dedup_ttl_seconds),
        dispatcher=dispatcher,
    )
    password_reset_service = PasswordResetService(
        tokens=persistence,
        identity=identity,
        email_service=email_service,
        limiter=build_rate_limiter(
            settings.reset_rate_limit,
            settings.reset_rate_window_seconds,
            settings.redis_url,
            prefix="sitecare:reset",
        ),
        dispatcher=dispatcher,
        app_base_url=settings.app_base_url,
    )
    coupon_limiter = build_rate_limiter(
        settings.coupon_rate_limit_per_minute,
        60,
        settings.redis_url,
        prefix="sitecare:coupon",
    )

    return ApplicationContainer(
        settings=settings,
        persistence=persistence,
        identity=identity,
        price_catalog=catalog,
        stripe_service=stripe_service,
        subscription_service=subscription_service,
        billing_reconciler=reconciler,
        password_reset_service=password_reset_service,
        email_service=email_service,
        event_dispatcher=dispatcher,
        coupon_rate_limiter=coupon_limiter,
    )


def _create_lifespan(settings: Settings, prebuilt: Optional[ApplicationContainer]):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging()
        container = prebuilt or build_container(settings)
        if not container.stripe_service.is_configured():
            logger.warning("STRIPE_SECRET_KEY is not set; billing endpoints will fail until it is.")

        app.state.container = container  # type: ignore[attr-defined]

        try:
            yield
        finally:
            if prebuilt is None:
                container.persistence.close()

    return lifespan
