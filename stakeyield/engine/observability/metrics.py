# MIT License
# Copyright (c) 2025 Hashborn

"""
Prometheus Metrics Exporter

Exports engine metrics in Prometheus format.

Metrics:
- Committed and rejected operations
- Yield, provider fees and bonus grants paid
- Current epoch, whitelisted providers, reward reserve
"""

from prometheus_client import Counter, Gauge, CollectorRegistry

# Create registry for metrics
metrics_registry = CollectorRegistry()

# ═══════════════════════════════════════════════════════════════════
# OPERATION METRICS
# ═══════════════════════════════════════════════════════════════════

operations_total = Counter(
    'stakeyield_operations_total',
    'Total number of committed operations',
    ['op'],
    registry=metrics_registry
)

operations_rejected_total = Counter(
    'stakeyield_operations_rejected_total',
    'Total number of rejected operations',
    ['op', 'error'],
    registry=metrics_registry
)

events_emitted_total = Counter(
    'stakeyield_events_emitted_total',
    'Total number of emitted engine events',
    ['event'],
    registry=metrics_registry
)

# ═══════════════════════════════════════════════════════════════════
# ECONOMIC METRICS
# ═══════════════════════════════════════════════════════════════════

yield_paid_total = Counter(
    'stakeyield_yield_paid_total',
    'Net delegator yield paid out',
    registry=metrics_registry
)

provider_yield_paid_total = Counter(
    'stakeyield_provider_yield_paid_total',
    'Provider own-stake yield paid out',
    registry=metrics_registry
)

delegation_rewards_paid_total = Counter(
    'stakeyield_delegation_rewards_paid_total',
    'Provider fee income and bonus grants paid out',
    registry=metrics_registry
)

bonus_granted_total = Counter(
    'stakeyield_bonus_granted_total',
    'Bonus rewards granted to providers',
    registry=metrics_registry
)

# ═══════════════════════════════════════════════════════════════════
# STATE METRICS
# ═══════════════════════════════════════════════════════════════════

current_epoch = Gauge(
    'stakeyield_current_epoch',
    'Current epoch index',
    registry=metrics_registry
)

whitelisted_providers = Gauge(
    'stakeyield_whitelisted_providers',
    'Number of whitelisted providers',
    registry=metrics_registry
)

reserve_balance = Gauge(
    'stakeyield_reserve_balance',
    'Token balance held by the engine reserve',
    registry=metrics_registry
)


def update_metrics(engine):
    """Refreshes gauges from the current engine state."""
    if engine is None:
        return

    current_epoch.set(engine.get_current_epoch())
    reserve_balance.set(engine.reserve())
    whitelisted_providers.set(engine.whitelisted_count())
