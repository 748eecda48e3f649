"""Load balancing: resolve a service name to a node and track node health.

A cluster resolves the service name to its nodes and owns the "down" set.
The balancing component rotates through whatever the cluster returns,
starting at a random offset so many cold clients don't all hit node 0, and
reports the selected node to the cluster when the attempt remote-faulted.
How long a node stays down is the cluster's business.
"""
from __future__ import annotations

import abc
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, Union

import redis.asyncio as aioredis

from twinekit.config import TwineSettings
from twinekit.observability.metrics import NODES_MARKED_DOWN
from twinekit.pipeline import keys
from twinekit.pipeline.builder import Component, Next
from twinekit.pipeline.context import ExecutionContext
from twinekit.pipeline.errors import NoNodesAvailable, ensure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceNode:
    hostname: str
    port: Optional[int] = None

    def __str__(self) -> str:
        return f"{self.hostname}:{self.port}" if self.port else self.hostname


class AbstractCluster(abc.ABC):
    """Resolves ``service_name`` to nodes and handles marking nodes bad."""

    def __init__(self, service_name: str) -> None:
        ensure(service_name, "Provided service_name was empty or None.")
        self.service_name = service_name

    @abc.abstractmethod
    async def get_nodes(self, context: ExecutionContext) -> list[ServiceNode]:
        """Return the nodes currently eligible for traffic."""

    @abc.abstractmethod
    async def mark_node_down(self, node: ServiceNode) -> None:
        """Take *node* out of rotation until it has recovered."""


class StaticCluster(AbstractCluster):
    """Fixed node list with an in-process down set and timed re-inclusion.

    Args:
        service_name: the resource service this cluster serves
        nodes: ``ServiceNode``s or ``(hostname, port)`` pairs
        down_for_seconds: how long a faulted node is excluded
    """

    def __init__(
        self,
        service_name: str,
        nodes: Iterable[Union[ServiceNode, tuple]],
        down_for_seconds: Optional[float] = None,
    ) -> None:
        super().__init__(service_name)
        self._nodes = [node if isinstance(node, ServiceNode) else ServiceNode(*node) for node in nodes]
        if down_for_seconds is None:
            down_for_seconds = TwineSettings.from_env().node_down_seconds
        self.down_for_seconds = down_for_seconds
        self._down_until: dict[ServiceNode, float] = {}

    async def get_nodes(self, context: ExecutionContext) -> list[ServiceNode]:
        now = time.monotonic()
        for node, until in list(self._down_until.items()):
            if until <= now:
                logger.info("node_reincluded", extra={"service": self.service_name, "node": str(node)})
                del self._down_until[node]
        return [node for node in self._nodes if node not in self._down_until]

    async def mark_node_down(self, node: ServiceNode) -> None:
        self._down_until[node] = time.monotonic() + self.down_for_seconds


class RedisCluster(StaticCluster):
    """StaticCluster whose down markers live in Redis.

    All replicas of a client share one view of which nodes are down.  Redis
    errors fail open: the node list is returned unfiltered.
    """

    def __init__(
        self,
        service_name: str,
        nodes: Iterable[Union[ServiceNode, tuple]],
        redis_client: Any,
        down_for_seconds: Optional[float] = None,
    ) -> None:
        super().__init__(service_name, nodes, down_for_seconds)
        self._redis = redis_client

    @classmethod
    def from_url(
        cls,
        service_name: str,
        nodes: Iterable[Union[ServiceNode, tuple]],
        url: str,
        down_for_seconds: Optional[float] = None,
    ) -> "RedisCluster":
        client = aioredis.from_url(url, encoding="utf-8", decode_responses=True)
        return cls(service_name, nodes, client, down_for_seconds)

    async def aclose(self) -> None:
        await self._redis.aclose()

    def _key(self, node: ServiceNode) -> str:
        return f"twine:node_down:{self.service_name}:{node}"

    async def get_nodes(self, context: ExecutionContext) -> list[ServiceNode]:
        if not self._nodes:
            return []
        try:
            markers = await self._redis.mget([self._key(node) for node in self._nodes])
        except Exception as exc:
            logger.warning("cluster_store_read_error", extra={"service": self.service_name, "error": str(exc)})
            return list(self._nodes)
        return [node for node, marker in zip(self._nodes, markers) if not marker]

    async def mark_node_down(self, node: ServiceNode) -> None:
        try:
            await self._redis.set(self._key(node), "1", ex=max(1, int(self.down_for_seconds)))
        except Exception as exc:
            logger.warning("cluster_store_write_error", extra={"service": self.service_name, "error": str(exc)})


ClusterFactory = Callable[[str], AbstractCluster]


class LoadBalancer:
    """Round-robin node selection over a cluster's live nodes."""

    def __init__(self, cluster: AbstractCluster, start: Optional[int] = None) -> None:
        self.cluster = cluster
        # Randomize which node is hit first
        self._cursor = random.randrange(50) if start is None else start

    def select(self, nodes: list[ServiceNode], context: ExecutionContext) -> ServiceNode:
        if not nodes:
            raise NoNodesAvailable(
                f"No nodes available in the load balancer for {self.cluster.service_name}", context
            )
        node = nodes[self._cursor % len(nodes)]
        self._cursor += 1
        return node

    async def __call__(self, context: ExecutionContext, next_: Next) -> Any:
        nodes = await self.cluster.get_nodes(context)
        node = self.select(nodes, context)
        context[keys.HOST] = node.hostname
        context[keys.PORT] = node.port

        # Also runs when a timeout cancels the attempt; the fault is set first
        try:
            return await next_()
        finally:
            await self._report_if_faulted(node, context)

    async def _report_if_faulted(self, node: ServiceNode, context: ExecutionContext) -> None:
        if not context.is_remote_faulted:
            return
        logger.warning(
            "node_marked_down",
            extra={"service": self.cluster.service_name, "node": str(node)},
        )
        NODES_MARKED_DOWN.labels(service=self.cluster.service_name).inc()
        await self.cluster.mark_node_down(node)


def load_balancing_component(
    cluster: Union[AbstractCluster, ClusterFactory],
    service_name: str,
) -> Component:
    """Accept a cluster instance, or a factory/class called with the service name."""
    if not isinstance(cluster, AbstractCluster):
        cluster = cluster(service_name)
    return LoadBalancer(cluster)
