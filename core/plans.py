"""Plan tiers and their static pricing configuration."""

from decimal import Decimal
from enum import Enum

from pydantic import BaseModel


class PlanTier(str, Enum):
    """Subscription plan tier."""

    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"

    @property
    def is_paid(self) -> bool:
        return self != PlanTier.FREE


class PlanConfig(BaseModel):
    """Static per-tier pricing and limits. Prices are monthly USD."""

    name: str
    base_price: Decimal
    seat_price: Decimal
    included_seats: int
    ai_credits: int
    max_projects: int
    storage_gb: int
    has_ai: bool
    has_sso: bool
    has_api: bool
    has_online_payments: bool
    max_invoices_per_month: int = -1

    model_config = {"frozen": True}


PLAN_CONFIGS: dict[PlanTier, PlanConfig] = {
    PlanTier.FREE: PlanConfig(
        name="Free",
        base_price=Decimal("0.00"),
        seat_price=Decimal("0.00"),
        included_seats=1,
        ai_credits=5,
        max_projects=50,
        storage_gb=1,
        has_ai=True,
        has_sso=False,
        has_api=False,
        has_online_payments=False,
    ),
    PlanTier.PRO: PlanConfig(
        name="Pro",
        base_price=Decimal("29.00"),
        seat_price=Decimal("12.00"),
        included_seats=3,
        ai_credits=500,
        max_projects=-1,
        storage_gb=100,
        has_ai=True,
        has_sso=False,
        has_api=False,
        has_online_payments=True,
    ),
    PlanTier.ENTERPRISE: PlanConfig(
        name="Enterprise",
        base_price=Decimal("79.00"),
        seat_price=Decimal("10.00"),
        included_seats=10,
        ai_credits=2000,
        max_projects=-1,
        storage_gb=-1,
        has_ai=True,
        has_sso=True,
        has_api=True,
        has_online_payments=True,
    ),
}


def plan_config(tier: PlanTier) -> PlanConfig:
    return PLAN_CONFIGS[PlanTier(tier)]


class TierPrices(BaseModel):
    """Provider price identifiers for one paid tier."""

    base: str
    seat: str


class PriceCatalog(BaseModel):
    """
    Provider price identifiers for every paid tier.

    Free has no prices. Loaded from Vault (see clients.vault_client.get_stripe_config).
    """

    pro: TierPrices
    enterprise: TierPrices

    def for_tier(self, tier: PlanTier) -> TierPrices | None:
        """Price ids for a tier, or None for free."""
        tier = PlanTier(tier)
        if tier == PlanTier.PRO:
            return self.pro
        if tier == PlanTier.ENTERPRISE:
            return self.enterprise
        return None

    @classmethod
    def from_config(cls, config: dict[str, str]) -> "PriceCatalog":
        """Build from the flat Vault stripe secret fields."""
        return cls(
            pro=TierPrices(base=config["price_pro_base"], seat=config["price_pro_seat"]),
            enterprise=TierPrices(
                base=config["price_enterprise_base"],
                seat=config["price_enterprise_seat"],
            ),
        )
