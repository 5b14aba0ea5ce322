from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, fields
from typing import Dict

from .records import EFFECTIVE_STATUSES, TIERS, SubscriptionRecord
from .store import Collection

LOGGER = logging.getLogger("prism.tiers")

FREE = "free"
PRO = "pro"
TEAM = "team"
ENTERPRISE = "enterprise"

IDE_SYNC = "ide_sync"
UNLIMITED = -1


@dataclass(frozen=True)
class TierLimits:
    rules: int
    components: int
    projects: int
    ai_generations: int
    team_members: int
    ide_sync: bool

    def to_dict(self) -> Dict[str, object]:
        payload = asdict(self)
        return {
            "rules": payload["rules"],
            "components": payload["components"],
            "projects": payload["projects"],
            "aiGenerations": payload["ai_generations"],
            "teamMembers": payload["team_members"],
            "ideSync": payload["ide_sync"],
        }


TIER_LIMITS: Dict[str, TierLimits] = {
    FREE: TierLimits(rules=5, components=3, projects=1, ai_generations=10, team_members=0, ide_sync=False),
    PRO: TierLimits(rules=UNLIMITED, components=UNLIMITED, projects=10, ai_generations=500, team_members=0, ide_sync=True),
    TEAM: TierLimits(rules=UNLIMITED, components=UNLIMITED, projects=UNLIMITED, ai_generations=2000, team_members=10, ide_sync=True),
    ENTERPRISE: TierLimits(
        rules=UNLIMITED,
        components=UNLIMITED,
        projects=UNLIMITED,
        ai_generations=UNLIMITED,
        team_members=UNLIMITED,
        ide_sync=True,
    ),
}

CAPABILITIES = (IDE_SYNC,)

if set(TIER_LIMITS) != set(TIERS):
    raise RuntimeError("TIER_LIMITS must define every subscription tier")

_DISPLAY_NAMES = {FREE: "Free", PRO: "Pro", TEAM: "Team", ENTERPRISE: "Enterprise"}


def resolve_tier(subscriptions: Collection, user_id: str) -> str:
    """Return the caller's effective tier.

    Fail-to-free policy: a lookup error, a missing record or a malformed record
    all resolve to ``free``. Free features stay available when the subscription
    store is unreachable; paid capabilities are denied.
    """

    try:
        document = subscriptions.find_one({"userId": user_id, "status": {"$in": list(EFFECTIVE_STATUSES)}})
    except Exception as exc:
        LOGGER.warning("Subscription lookup failed for user=%s; applying free tier: %s", user_id, exc)
        return FREE
    if document is None:
        return FREE
    record = SubscriptionRecord.from_document(document)
    if record is None or not record.effective:
        LOGGER.warning("Ignoring malformed subscription record for user=%s", user_id)
        return FREE
    return record.tier


def limits_for(tier: str) -> TierLimits:
    return TIER_LIMITS[tier]


def capability_for(tier: str, capability: str) -> bool:
    if capability not in CAPABILITIES:
        raise KeyError(f"Unknown capability {capability!r}")
    return bool(getattr(TIER_LIMITS[tier], capability))


def can_use_feature(tier: str, feature: str, usage: int = 0) -> bool:
    limits = TIER_LIMITS[tier]
    if feature not in {f.name for f in fields(TierLimits)}:
        raise KeyError(f"Unknown feature {feature!r}")
    limit = getattr(limits, feature)
    if isinstance(limit, bool):
        return limit
    if limit == UNLIMITED:
        return True
    return usage < limit


def minimum_tier_for(capability: str) -> str:
    for tier in TIERS:
        if capability_for(tier, capability):
            return tier
    raise KeyError(f"No tier grants {capability!r}")


def tier_display_name(tier: str) -> str:
    return _DISPLAY_NAMES.get(tier, tier.capitalize())
