from fastapi import Depends, Request

from .container import ApplicationContainer


def get_container(request: Request) -> ApplicationContainer:
    container = getattr(request.app.state, "container", None)
    if not container:
        raise RuntimeError("Application container not initialised.")
    return container


def get_settings(container: ApplicationContainer = Depends(get_container)):
    return container.settings


def get_identity_provider(container: ApplicationContainer = Depends(get_container)):
    return container.identity


def get_subscription_service(container: ApplicationContainer = Depends(get_container)):
    return container.subscription_service


def get_billing_reconciler(container: ApplicationContainer = Depends(get_container)):
    return container.billing_reconciler


def get_password_reset_service(container: ApplicationContainer = Depends(get_container)):
    return container.password_reset_service


def get_coupon_rate_limiter(container: ApplicationContainer = Depends(get_container)):
    return container.coupon_rate_limiter
