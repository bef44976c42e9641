"""Billing configuration."""

from pydantic import BaseModel, Field


class BillingConfig(BaseModel):
    """
    Billing and invoicing configuration.

    Secrets (provider keys, price ids) live in Vault, not here. This holds
    tunables with safe defaults.
    """

    # Public invoice links
    viewing_token_expiry_days: int = Field(
        default=90,
        description="How long a public invoice link stays valid after sending",
        ge=1,
        le=365,
    )

    # Invoice defaults
    default_payment_terms: str = Field(
        default="Net 30",
        description="Payment terms used when neither request nor settings provide one",
    )
    invoice_number_prefix: str = Field(
        default="INV-",
        description="Prefix for per-business invoice numbers",
    )
    currency: str = Field(
        default="usd",
        description="Single billing currency",
    )

    # Per-tenant subscription lock
    lock_timeout_seconds: int = Field(
        default=30,
        description="Max time a tenant subscription lock is held before it expires",
        ge=5,
        le=300,
    )
    lock_blocking_timeout_seconds: int = Field(
        default=10,
        description="How long to wait for another billing operation to finish",
        ge=0,
        le=60,
    )

    # Overview
    override_history_limit: int = Field(
        default=50,
        description="Number of override rows returned by the billing overview",
        ge=1,
        le=500,
    )

    # Application
    app_base_url: str = Field(
        default="http://localhost:8000",
        description="Base URL for public invoice links",
    )
    app_name: str = Field(
        default="Billing",
        description="Application name for emails",
    )
