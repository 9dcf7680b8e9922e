"""
Configuration settings for the Weighbridge Allocation Engine.

This module handles application configuration using Pydantic settings.
Alert thresholds and the site route are operationally tuned, so they live
here rather than in the engine code.
"""

from pydantic_settings import BaseSettings
from typing import List, Optional

from weighbridge.app.core.exceptions import ConfigurationError


class Settings(BaseSettings):
    """Application settings."""

    # Application
    app_name: str = "Weighbridge Allocation Engine"
    api_version: str = "v1"
    debug: bool = False
    log_level: str = "INFO"

    # Route (ordered site IDs, origin first)
    route: List[str] = ["mine", "lions_park", "bulk_connections"]

    # Weight reconciliation
    variance_warning_pct: float = 2.0
    variance_critical_pct: float = 5.0

    # Staging tiers (hours)
    staging_warning_hours: float = 6.0
    staging_escalation_hours: float = 12.0
    staging_critical_hours: float = 24.0

    # Stockpile utilisation (fraction of capacity)
    stockpile_warning_utilisation: float = 0.85
    stockpile_critical_utilisation: float = 0.95

    # Orders
    truck_shortfall_window_hours: float = 24.0

    # Transporter compliance
    transporter_compliance_warning: float = 0.80
    transporter_compliance_critical: Optional[float] = None
    compliance_window_days: int = 30

    # Gate
    unallocated_sighting_window_hours: float = 12.0

    # Rule toggles
    disabled_rules: List[str] = []

    class Config:
        env_file = ".env"
        case_sensitive = False


def validate_settings(config: Settings) -> Settings:
    """
    Check settings for values the engine cannot run with.

    Called once when the engine is built, so a bad deployment fails at
    startup instead of on the first evaluation pass.

    Raises:
        ConfigurationError: On the first invalid setting found.
    """
    from weighbridge.app.models.alert_enums import AlertRuleType

    if not config.route:
        raise ConfigurationError("route must contain at least one site", setting="route")
    if len(set(config.route)) != len(config.route):
        raise ConfigurationError("route must not visit a site twice", setting="route")

    positive = {
        "variance_warning_pct": config.variance_warning_pct,
        "variance_critical_pct": config.variance_critical_pct,
        "staging_warning_hours": config.staging_warning_hours,
        "staging_escalation_hours": config.staging_escalation_hours,
        "staging_critical_hours": config.staging_critical_hours,
        "truck_shortfall_window_hours": config.truck_shortfall_window_hours,
        "compliance_window_days": config.compliance_window_days,
        "unallocated_sighting_window_hours": config.unallocated_sighting_window_hours,
    }
    for name, value in positive.items():
        if value is None or value <= 0:
            raise ConfigurationError(f"{name} must be greater than zero", setting=name)

    if config.variance_warning_pct >= config.variance_critical_pct:
        raise ConfigurationError(
            "variance_warning_pct must be below variance_critical_pct",
            setting="variance_warning_pct",
        )

    if not (config.staging_warning_hours < config.staging_escalation_hours < config.staging_critical_hours):
        raise ConfigurationError(
            "staging tiers must be strictly increasing (warning < escalation < critical)",
            setting="staging_warning_hours",
        )

    for name in ("stockpile_warning_utilisation", "stockpile_critical_utilisation"):
        value = getattr(config, name)
        if not 0 < value <= 1:
            raise ConfigurationError(f"{name} must be within (0, 1]", setting=name)
    if config.stockpile_warning_utilisation >= config.stockpile_critical_utilisation:
        raise ConfigurationError(
            "stockpile_warning_utilisation must be below stockpile_critical_utilisation",
            setting="stockpile_warning_utilisation",
        )

    if not 0 < config.transporter_compliance_warning <= 1:
        raise ConfigurationError(
            "transporter_compliance_warning must be within (0, 1]",
            setting="transporter_compliance_warning",
        )
    critical = config.transporter_compliance_critical
    if critical is not None and not 0 < critical < config.transporter_compliance_warning:
        raise ConfigurationError(
            "transporter_compliance_critical must be within (0, transporter_compliance_warning)",
            setting="transporter_compliance_critical",
        )

    known_rules = {rule.value for rule in AlertRuleType}
    unknown = [name for name in config.disabled_rules if name not in known_rules]
    if unknown:
        raise ConfigurationError(
            f"Unknown rule(s) in disabled_rules: {', '.join(unknown)}",
            setting="disabled_rules",
        )

    return config


settings = Settings()
