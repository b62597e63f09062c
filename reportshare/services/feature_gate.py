"""Subscription-tier feature gating.

Synopsis:
Pure policy: ``(feature, plan tier, subscription status) -> bool``. A static
rule table names the minimum tier per feature; features without a rule are open
to every tier. Global kill-switch flags can force a feature off everywhere.

Glossary:
- Effective tier: Inactive subscriptions evaluate as FREE, TRIAL as
  PROFESSIONAL, ACTIVE at the plan's own tier.
- Kill switch: ``flags[feature] is False`` disables the feature regardless of tier.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Iterable, Mapping

logger = logging.getLogger(__name__)


class PlanTier(IntEnum):
    FREE = 0
    STARTER = 1
    CREATOR = 2
    PROFESSIONAL = 3
    BUSINESS = 4
    ENTERPRISE = 5

    @property
    def plan_name(self) -> str:
        return self.name.lower()


class SubscriptionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    TRIAL = "TRIAL"
    PAST_DUE = "PAST_DUE"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"
    SUSPENDED = "SUSPENDED"


@dataclass(frozen=True)
class FeatureGateRule:
    feature: str
    required_tier: PlanTier
    usage_type: str | None = None
    description: str = ""


@dataclass(frozen=True)
class FeatureAccessDecision:
    feature: str
    has_access: bool
    effective_tier: PlanTier
    required_tier: PlanTier | None
    reason: str

    @property
    def upgrade_required(self) -> bool:
        return not self.has_access and self.reason == "tier_too_low"


_ENTITLED_STATUSES = {SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIAL}
TRIAL_TIER = PlanTier.PROFESSIONAL

FEATURE_GATES: tuple[FeatureGateRule, ...] = (
    FeatureGateRule("url_deep_scan", PlanTier.STARTER, "deep_scans_per_month",
                    "Deep scanning requires Starter plan or higher"),
    FeatureGateRule("bulk_checks", PlanTier.STARTER, "bulk_checks_per_month",
                    "Bulk URL checking requires Starter plan or higher"),
    FeatureGateRule("url_batch_analysis", PlanTier.STARTER, "bulk_checks_per_month",
                    "Batch analysis requires Starter plan or higher"),
    FeatureGateRule("advanced_analytics", PlanTier.CREATOR, None,
                    "Advanced analytics available for Creator plan and above"),
    FeatureGateRule("social_media_monitoring", PlanTier.CREATOR, None,
                    "Social media monitoring is a Creator plan feature"),
    FeatureGateRule("social_visibility_analysis", PlanTier.CREATOR, None,
                    "Social visibility analysis requires Creator plan or higher"),
    FeatureGateRule("social_engagement_analysis", PlanTier.CREATOR, None,
                    "Social engagement analysis requires Creator plan or higher"),
    FeatureGateRule("dashboard_custom_reports", PlanTier.CREATOR, None,
                    "Custom reports available for Creator plan and above"),
    FeatureGateRule("team_collaboration", PlanTier.PROFESSIONAL, None,
                    "Team features require Professional plan or higher"),
    FeatureGateRule("social_penalty_detection", PlanTier.PROFESSIONAL, None,
                    "Penalty detection requires Professional plan or higher"),
    FeatureGateRule("crisis_real_time_alerts", PlanTier.PROFESSIONAL, None,
                    "Real-time alerts require Professional plan or higher"),
    FeatureGateRule("dashboard_data_export", PlanTier.PROFESSIONAL, None,
                    "Data export requires Professional plan or higher"),
    FeatureGateRule("url_api_access", PlanTier.PROFESSIONAL, "api_calls_per_day",
                    "API access requires Professional plan or higher"),
    FeatureGateRule("team_management", PlanTier.BUSINESS, None,
                    "Team management requires Business plan or higher"),
    FeatureGateRule("multi_user_access", PlanTier.BUSINESS, None,
                    "Multi-user access requires Business plan or higher"),
    FeatureGateRule("social_automated_monitoring", PlanTier.BUSINESS, None,
                    "Automated monitoring requires Business plan or higher"),
    FeatureGateRule("dashboard_api_integration", PlanTier.BUSINESS, None,
                    "API integration requires Business plan or higher"),
    FeatureGateRule("crisis_automated_response", PlanTier.BUSINESS, None,
                    "Automated crisis response requires Business plan or higher"),
    FeatureGateRule("white_label", PlanTier.ENTERPRISE, None,
                    "White label features are exclusive to Enterprise plan"),
    FeatureGateRule("custom_integrations", PlanTier.ENTERPRISE, None,
                    "Custom integrations are exclusive to Enterprise plan"),
    FeatureGateRule("advanced_security", PlanTier.ENTERPRISE, None,
                    "Advanced security features are exclusive to Enterprise plan"),
    FeatureGateRule("custom_branding", PlanTier.ENTERPRISE, None,
                    "Custom branding is exclusive to Enterprise plan"),
    FeatureGateRule("dedicated_support", PlanTier.ENTERPRISE, None,
                    "Dedicated support is exclusive to Enterprise plan"),
    FeatureGateRule("sla_guarantee", PlanTier.ENTERPRISE, None,
                    "SLA guarantee is exclusive to Enterprise plan"),
    FeatureGateRule("crisis_custom_workflows", PlanTier.ENTERPRISE, None,
                    "Custom workflows are exclusive to Enterprise plan"),
)

# Known features with no gate; open to every tier.
UNGATED_FEATURES: tuple[str, ...] = (
    "url_comprehensive_scan",
    "url_history_export",
    "social_algorithm_health",
    "dashboard_advanced_analytics",
    "bot_health_monitoring",
    "bot_health_restart",
    "bot_health_logs",
    "priority_support",
    "social_custom_alerts",
)

FEATURE_CATEGORIES: dict[str, dict] = {
    "URL_ANALYSIS": {
        "name": "URL Analysis",
        "description": "Advanced URL scanning and analysis features",
        "features": ("url_deep_scan", "url_batch_analysis", "url_comprehensive_scan",
                     "url_history_export", "url_api_access"),
    },
    "SOCIAL_PROTECTION": {
        "name": "Social Protection",
        "description": "Social media algorithm and account protection",
        "features": ("social_algorithm_health", "social_visibility_analysis",
                     "social_engagement_analysis", "social_penalty_detection",
                     "social_automated_monitoring", "social_custom_alerts"),
    },
    "DASHBOARD": {
        "name": "Dashboard & Analytics",
        "description": "Advanced dashboard features and analytics",
        "features": ("dashboard_advanced_analytics", "dashboard_custom_reports",
                     "dashboard_data_export", "dashboard_api_integration",
                     "dashboard_team_collaboration"),
    },
    "CRISIS_MANAGEMENT": {
        "name": "Crisis Management",
        "description": "Real-time crisis detection and response",
        "features": ("crisis_real_time_alerts", "crisis_automated_response",
                     "crisis_custom_workflows", "crisis_priority_support"),
    },
    "BOT_HEALTH": {
        "name": "Bot Health",
        "description": "Social media bot monitoring and management",
        "features": ("bot_health_monitoring", "bot_health_restart",
                     "bot_health_logs", "bot_health_custom_alerts"),
    },
}

# Legacy plan names from before the six-tier catalogue, plus the current names.
PLAN_ALIASES: dict[str, PlanTier] = {
    "FREE": PlanTier.FREE,
    "BASIC": PlanTier.STARTER,
    "PRO": PlanTier.PROFESSIONAL,
    "ENTERPRISE": PlanTier.ENTERPRISE,
    **{tier.plan_name: tier for tier in PlanTier},
}


def _build_rule_index(rules: Iterable[FeatureGateRule]) -> dict[str, FeatureGateRule]:
    index: dict[str, FeatureGateRule] = {}
    for rule in rules:
        if rule.feature in index:
            raise RuntimeError(f"Feature {rule.feature!r} has more than one gate rule")
        if not isinstance(rule.required_tier, PlanTier):
            raise RuntimeError(f"Feature {rule.feature!r} has non-tier requirement {rule.required_tier!r}")
        index[rule.feature] = rule
    overlap = index.keys() & set(UNGATED_FEATURES)
    if overlap:
        raise RuntimeError(f"Features listed as both gated and ungated: {sorted(overlap)}")
    return index


_RULES_BY_FEATURE = _build_rule_index(FEATURE_GATES)


def validate_feature_tables() -> None:
    """Re-run table validation; called at app startup."""
    _build_rule_index(FEATURE_GATES)
    unmapped = [tier for tier in PlanTier if PLAN_ALIASES.get(tier.plan_name) is not tier]
    if unmapped:
        raise RuntimeError(f"Plan tiers without a plan-name mapping: {unmapped}")


def plan_to_tier(plan) -> PlanTier:
    """Accept a PlanTier, tier value, or (legacy) plan name. Unknown -> FREE."""
    if isinstance(plan, PlanTier):
        return plan
    if isinstance(plan, int):
        try:
            return PlanTier(plan)
        except ValueError:
            return PlanTier.FREE
    if isinstance(plan, str):
        key = plan.strip()
        return PLAN_ALIASES.get(key) or PLAN_ALIASES.get(key.lower()) or PlanTier.FREE
    return PlanTier.FREE


def coerce_status(status) -> SubscriptionStatus | None:
    if isinstance(status, SubscriptionStatus):
        return status
    if status is None:
        return SubscriptionStatus.ACTIVE
    try:
        return SubscriptionStatus(str(status).strip().upper())
    except ValueError:
        return None


def effective_tier(plan, status=SubscriptionStatus.ACTIVE) -> PlanTier:
    normalized = coerce_status(status)
    if normalized not in _ENTITLED_STATUSES:
        return PlanTier.FREE
    if normalized is SubscriptionStatus.TRIAL:
        return TRIAL_TIER
    return plan_to_tier(plan)


def feature_rule(feature: str) -> FeatureGateRule | None:
    return _RULES_BY_FEATURE.get(feature)


def required_tier(feature: str) -> PlanTier | None:
    rule = feature_rule(feature)
    return rule.required_tier if rule else None


def required_plan(feature: str) -> str | None:
    tier = required_tier(feature)
    return tier.plan_name if tier is not None else None


def tier_has_feature(feature: str, tier) -> bool:
    rule = feature_rule(feature)
    if rule is None:
        return True
    return plan_to_tier(tier) >= rule.required_tier


def is_plan_higher_tier(plan_a, plan_b) -> bool:
    return plan_to_tier(plan_a) > plan_to_tier(plan_b)


def all_known_features() -> tuple[str, ...]:
    return tuple(rule.feature for rule in FEATURE_GATES) + UNGATED_FEATURES


class FeatureGate:
    """Tier check AND kill-switch check."""

    def __init__(self, flags: Mapping[str, bool] | None = None):
        self._flags = dict(flags or {})

    def set_flags(self, flags: Mapping[str, bool]) -> None:
        self._flags = dict(flags)

    def is_feature_enabled(self, feature: str) -> bool:
        return self._flags.get(feature, True) is not False

    def has_feature_access(self, feature: str, plan, status=SubscriptionStatus.ACTIVE) -> bool:
        if not self.is_feature_enabled(feature):
            return False
        return tier_has_feature(feature, effective_tier(plan, status))

    def check_feature_access(self, feature: str, plan, status=SubscriptionStatus.ACTIVE) -> FeatureAccessDecision:
        tier = effective_tier(plan, status)
        needed = required_tier(feature)
        if not self.is_feature_enabled(feature):
            return FeatureAccessDecision(feature, False, tier, needed, "feature_disabled")
        if needed is None:
            return FeatureAccessDecision(feature, True, tier, None, "ungated")
        if tier >= needed:
            return FeatureAccessDecision(feature, True, tier, needed, "tier_sufficient")
        if coerce_status(status) not in _ENTITLED_STATUSES:
            return FeatureAccessDecision(feature, False, tier, needed, "subscription_inactive")
        return FeatureAccessDecision(feature, False, tier, needed, "tier_too_low")

    def plan_features(self, plan) -> list[str]:
        """Every known feature available at ``plan`` (ungated ones included)."""
        tier = plan_to_tier(plan)
        return [
            feature
            for feature in all_known_features()
            if tier_has_feature(feature, tier) and self.is_feature_enabled(feature)
        ]

    def upgrade_diff(self, from_plan, to_plan) -> list[str]:
        current = set(self.plan_features(from_plan))
        return [feature for feature in self.plan_features(to_plan) if feature not in current]

    def upgrade_suggestions(self, plan) -> dict[str, list[str]]:
        tier = plan_to_tier(plan)
        suggestions: dict[str, list[str]] = {}
        for higher in PlanTier:
            if higher <= tier:
                continue
            unlocked = self.upgrade_diff(tier, higher)
            if unlocked:
                suggestions[higher.plan_name] = unlocked
        return suggestions

    def features_by_category(self, plan) -> dict[str, list[str]]:
        available = set(self.plan_features(plan))
        return {
            key: [feature for feature in category["features"] if feature in available]
            for key, category in FEATURE_CATEGORIES.items()
        }


def load_feature_flags() -> dict[str, bool]:
    """Read kill-switch flags from the ``feature_flag`` table."""
    from ..models import FeatureFlag

    return {flag.key: bool(flag.enabled) for flag in FeatureFlag.query.all()}


def has_feature_access(feature: str, plan, status=SubscriptionStatus.ACTIVE) -> bool:
    """Tier-only check with no kill switches applied."""
    return FeatureGate().has_feature_access(feature, plan, status)
