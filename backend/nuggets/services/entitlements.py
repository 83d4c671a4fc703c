from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Dict, Protocol

from ..core.config import get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Entitlement:
    tier: str
    batch_limit: int
    ai_processing_enabled: bool
    auto_process_enabled: bool


class EntitlementSource(Protocol):
    def for_owner(self, owner_id: str) -> Entitlement: ...


def tier_table(free_ai_enabled: bool = True) -> Dict[str, Entitlement]:
    return {
        "free": Entitlement("free", batch_limit=3, ai_processing_enabled=free_ai_enabled, auto_process_enabled=False),
        "pro": Entitlement("pro", batch_limit=10, ai_processing_enabled=True, auto_process_enabled=True),
        "ultimate": Entitlement("ultimate", batch_limit=15, ai_processing_enabled=True, auto_process_enabled=True),
    }


class StaticEntitlementSource:
    """
    Tier lookup from configuration.

    Billing lives elsewhere; this reads DEFAULT_TIER and the optional
    OWNER_TIERS_JSON mapping of owner id to tier name.
    """

    def __init__(
        self,
        owner_tiers: Dict[str, str] | None = None,
        default_tier: str | None = None,
        free_ai_enabled: bool | None = None,
    ) -> None:
        settings = get_settings()
        self.tiers = tier_table(
            settings.FREE_TIER_AI_ENABLED if free_ai_enabled is None else free_ai_enabled
        )
        self.default_tier = default_tier or settings.DEFAULT_TIER
        if owner_tiers is None:
            owner_tiers = self._load_owner_tiers(settings.OWNER_TIERS_JSON)
        self.owner_tiers = owner_tiers

    @staticmethod
    def _load_owner_tiers(raw: str | None) -> Dict[str, str]:
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.error("OWNER_TIERS_JSON is not valid JSON; every owner gets the default tier")
            return {}
        if not isinstance(data, dict):
            logger.error("OWNER_TIERS_JSON must be an object of owner id -> tier")
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def for_owner(self, owner_id: str) -> Entitlement:
        tier = self.owner_tiers.get(owner_id, self.default_tier)
        entitlement = self.tiers.get(tier)
        if entitlement is None:
            logger.warning(
                "Unknown tier; using free",
                extra={"owner_id": owner_id, "step": "entitlement", "tier": tier},
            )
            entitlement = self.tiers["free"]
        return entitlement
