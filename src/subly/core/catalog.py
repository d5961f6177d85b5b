"""SubscriptionCatalog - append-only service registry."""

from __future__ import annotations

from subly.constants import (
    MAX_LOGO_URL_LEN,
    MAX_PROVIDER_LEN,
    MAX_SERVICE_DETAILS_LEN,
    MAX_SERVICE_NAME_LEN,
)
from subly.core.checked import add_u64, to_u64
from subly.errors import ErrorCode, ValidationError
from subly.models.state import ServiceCatalog, SubscriptionService

_FIELD_LIMITS = (
    ("name", MAX_SERVICE_NAME_LEN),
    ("details", MAX_SERVICE_DETAILS_LEN),
    ("logo_url", MAX_LOGO_URL_LEN),
    ("provider", MAX_PROVIDER_LEN),
)


def validate_service_fields(**fields: str) -> None:
    for name, limit in _FIELD_LIMITS:
        value = fields.get(name, "")
        if len(value) > limit:
            raise ValidationError(ErrorCode.STRING_TOO_LONG, f"{name} > {limit} chars")


def append_service(
    catalog: ServiceCatalog,
    creator: str,
    name: str,
    monthly_price: int,
    details: str,
    logo_url: str,
    provider: str,
    now: int,
) -> SubscriptionService:
    validate_service_fields(name=name, details=details, logo_url=logo_url, provider=provider)
    service = SubscriptionService(
        id=catalog.next_service_id,
        creator=creator,
        name=name,
        monthly_price=to_u64(monthly_price),
        details=details,
        logo_url=logo_url,
        provider=provider,
        created_at=now,
    )
    catalog.next_service_id = add_u64(catalog.next_service_id, 1)
    catalog.services.append(service)
    return service


def find_service(catalog: ServiceCatalog, service_id: int) -> SubscriptionService:
    for service in catalog.services:
        if service.id == service_id:
            return service
    raise ValidationError(ErrorCode.SUBSCRIPTION_SERVICE_NOT_FOUND, str(service_id))
