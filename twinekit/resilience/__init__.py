"""Resilience policies: retries, timeouts, load balancing."""

from .retry import EscalateWith, RetryPolicy, RetryWhen, retry_component
from .timeout import timeout_component
from .loadbalancer import (
    AbstractCluster,
    LoadBalancer,
    RedisCluster,
    ServiceNode,
    StaticCluster,
    load_balancing_component,
)

__all__ = [
    "RetryPolicy",
    "RetryWhen",
    "EscalateWith",
    "retry_component",
    "timeout_component",
    "AbstractCluster",
    "StaticCluster",
    "RedisCluster",
    "ServiceNode",
    "LoadBalancer",
    "load_balancing_component",
]
