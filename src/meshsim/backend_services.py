"""
Backend services simulation (optional extension).

Models a handful of named backend services around the decentralized network
and a periodic background tick that perturbs their request counters and
response-time averages. Service-to-service adjacency follows fixed rules:

    api       -> databases (first two), compute (first two)
    database  -> storage (first two)
    compute   -> one random database, one random analytics
    storage   -> (none)
    analytics -> databases (first two), one random storage

The tick runs as an asyncio task; stop() cancels it and must be called
before reinitializing or tearing down the owning context.
"""

import asyncio
import json
import logging
import random
import string
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np

from .content_store import ContentStore
from .errors import BackendUnavailable
from .event_bus import EventBus
from .events import ServiceUpdatedEvent
from .message_bus import MessageBus
from .models import now_ms
from .network import ASSISTANT_NODE_ID
from .orchestrator import QueryOrchestrator, QueryResult, CLIENT_ID

logger = logging.getLogger(__name__)


SERVICE_TYPES = ("api", "database", "compute", "storage", "analytics")

SERVICE_COUNTS = {"api": 3, "database": 2, "compute": 2, "storage": 3, "analytics": 2}

SERVICE_NAMES = {
    "api": ["RESTful Gateway", "GraphQL Endpoint", "API Proxy", "Integration Service", "Gateway Service"],
    "database": ["Document Store", "Graph Database", "Time Series DB", "Key-Value Store", "SQL Service"],
    "compute": ["Compute Cluster", "Processing Engine", "Execution Runtime", "Serverless Function", "Task Runner"],
    "storage": ["Object Store", "Block Storage", "Content Cache", "Data Lake", "Archive Service"],
    "analytics": ["Analytics Engine", "Metrics Processor", "Log Analyzer", "ML Pipeline", "Data Warehouse"],
}

REGIONS = ["us-east", "us-west", "eu-central", "ap-south", "ap-northeast"]

REQUEST_TYPES = ["read", "write", "compute", "query", "analyze"]

REQUEST_PAYLOADS = [
    '{"action":"fetch","resource":"user-data"}',
    '{"action":"update","resource":"metrics"}',
    '{"action":"process","resource":"transactions"}',
    '{"action":"analyze","resource":"logs"}',
    '{"action":"store","resource":"assets"}',
]

RESPONSE_TEMPLATES = [
    'Based on backend analysis of "{snippet}...", our decentralized services have determined '
    'that this request requires attention to network topology optimization.',
    'The backend services have processed "{snippet}..." and determined that the distributed '
    'consensus algorithm shows promising efficiency metrics.',
    'After routing through {hops} nodes, your query "{snippet}..." has been analyzed and we\'ve '
    'identified relevant patterns in the network traffic.',
    'Our backend simulation for "{snippet}..." indicates that latency could be reduced by '
    'optimizing the service-to-service communication patterns.',
    'The query "{snippet}..." has been successfully processed through our backend services. '
    'The simulation suggests scaling compute resources to improve throughput.',
]

MAX_STORED_REQUESTS = 100


@dataclass
class BackendService:
    """A simulated backend service."""
    id: str
    name: str
    type: str  # api | database | compute | storage | analytics
    status: str = "online"  # online | offline | degraded
    region: str = "us-east"
    connections: List[str] = field(default_factory=list)
    last_request: Optional[int] = None
    processed_requests: int = 0
    avg_response_time: float = 100.0  # milliseconds

    def record_request(self) -> None:
        self.last_request = now_ms()
        self.processed_requests += 1

    def connect(self, service_id: str) -> None:
        if service_id not in self.connections:
            self.connections.append(service_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "status": self.status,
            "region": self.region,
            "connections": list(self.connections),
            "last_request": self.last_request,
            "processed_requests": self.processed_requests,
            "avg_response_time": self.avg_response_time,
        }


@dataclass
class ServiceRequest:
    """A request handled by a backend service."""
    id: str
    service_id: str
    type: str  # read | write | compute | query | analyze
    payload: str
    timestamp: int = None
    completed: bool = False
    response_time: Optional[float] = None
    cid: Optional[str] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = now_ms()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "service_id": self.service_id,
            "type": self.type,
            "payload": self.payload,
            "timestamp": self.timestamp,
            "completed": self.completed,
            "response_time": self.response_time,
            "cid": self.cid,
        }


class BackendSimulation:
    """
    Backend services around the decentralized network.

    Usage:
        backend = BackendSimulation(content_store, message_bus, orchestrator)
        await backend.initialize()          # also starts the background tick
        result = await backend.process_backend_query("hello")
        backend.stop()
    """

    def __init__(self,
                 content_store: ContentStore,
                 message_bus: MessageBus,
                 orchestrator: QueryOrchestrator,
                 event_bus: Optional[EventBus] = None,
                 rng: Optional[random.Random] = None,
                 tick_interval: float = 5.0,
                 hop_delay: Tuple[float, float] = (0.05, 0.25)):
        self.content_store = content_store
        self.message_bus = message_bus
        self.orchestrator = orchestrator
        self.event_bus = event_bus or message_bus.event_bus
        self.rng = rng or random.Random()
        self.tick_interval = tick_interval
        self.hop_delay = hop_delay

        self._services: Dict[str, BackendService] = {}
        self._requests: List[ServiceRequest] = []
        self._task: Optional[asyncio.Task] = None
        self._initialized = False

    # ==================== Setup ====================

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _new_request_id(self) -> str:
        alphabet = string.digits + string.ascii_lowercase
        return f"req-{now_ms()}-{''.join(self.rng.choice(alphabet) for _ in range(7))}"

    def _create_service(self, service_type: str, index: int) -> BackendService:
        names = SERVICE_NAMES[service_type]
        return BackendService(
            id=f"{service_type}-{index}",
            name=f"{names[index % len(names)]}-{index + 1}",
            type=service_type,
            status="degraded" if self.rng.random() > 0.9 else "online",
            region=self.rng.choice(REGIONS),
            avg_response_time=50 + self.rng.random() * 200,
        )

    def _of_type(self, service_type: str, exclude: Optional[str] = None) -> List[BackendService]:
        return [s for s in self._services.values() if s.type == service_type and s.id != exclude]

    def _connect_services(self) -> None:
        for service in self._services.values():
            if service.type == "api":
                for target in self._of_type("database", service.id)[:2]:
                    service.connect(target.id)
                for target in self._of_type("compute", service.id)[:2]:
                    service.connect(target.id)
            elif service.type == "database":
                for target in self._of_type("storage", service.id)[:2]:
                    service.connect(target.id)
            elif service.type == "compute":
                databases = self._of_type("database", service.id)
                analytics = self._of_type("analytics", service.id)
                if databases:
                    service.connect(self.rng.choice(databases).id)
                if analytics:
                    service.connect(self.rng.choice(analytics).id)
            elif service.type == "analytics":
                for target in self._of_type("database", service.id)[:2]:
                    service.connect(target.id)
                storage = self._of_type("storage", service.id)
                if storage:
                    service.connect(self.rng.choice(storage).id)

    async def initialize(self, force: bool = False, auto_start: bool = True) -> List[BackendService]:
        """
        Create services, wire them, snapshot them to the content store and
        start the background tick.

        Args:
            force: Rebuild even if already initialized
            auto_start: Start the periodic tick after initializing
        """
        if self._initialized and not force:
            return self.get_services()

        self.stop()
        self._services = {}
        for service_type in SERVICE_TYPES:
            for i in range(SERVICE_COUNTS[service_type]):
                service = self._create_service(service_type, i)
                self._services[service.id] = service
        self._connect_services()
        self._requests = []

        await self.content_store.put(
            json.dumps([s.to_dict() for s in self._services.values()]),
            {"type": "system-data", "name": "backend-services", "timestamp": now_ms()},
            content_type="application/json",
        )

        self._initialized = True
        logger.info(f"Backend services initialized: {len(self._services)}")
        if auto_start:
            self.start()
        return self.get_services()

    # ==================== Background tick ====================

    def start(self, interval: Optional[float] = None) -> None:
        """Start (or restart) the periodic tick. Requires a running event loop."""
        self.stop()
        if interval is not None:
            self.tick_interval = interval
        self._task = asyncio.create_task(self._run())

    def stop(self) -> None:
        """Cancel the periodic tick. Safe to call when not running."""
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def shutdown(self) -> None:
        """Stop the tick and wait for the task to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while True:
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"Backend simulation tick failed: {e}", exc_info=True)
            await asyncio.sleep(self.tick_interval)

    def _notify(self, service: BackendService, request: Optional[ServiceRequest] = None) -> None:
        self.event_bus.publish(ServiceUpdatedEvent(service=service, request=request))

    async def _store_quietly(self, content: str, metadata: Dict[str, Any]) -> Optional[str]:
        try:
            return await self.content_store.put(content, metadata, content_type="application/json")
        except BackendUnavailable as e:
            logger.error(f"Failed to store {metadata.get('type')}: {e}")
            return None

    async def tick(self) -> None:
        """Simulate one round of activity on 1-3 random services."""
        if not self._initialized or not self._services:
            return

        services = list(self._services.values())
        for _ in range(self.rng.randint(1, 3)):
            service = self.rng.choice(services)
            service.record_request()

            jitter = self.rng.random() * 50 - 25
            service.avg_response_time = max(10.0, service.avg_response_time + jitter * 0.1)

            if self.rng.random() > 0.95:
                service.status = "degraded" if service.status == "online" else "online"

            request = ServiceRequest(
                id=self._new_request_id(),
                service_id=service.id,
                type=self.rng.choice(REQUEST_TYPES),
                payload=self.rng.choice(REQUEST_PAYLOADS),
                completed=True,
                response_time=service.avg_response_time + jitter,
            )
            self._requests.append(request)

            target = None
            if service.connections:
                target = self._services.get(self.rng.choice(service.connections))

            if target is None:
                self._notify(service, request)
                continue

            target.record_request()
            self._notify(service, request)
            self._notify(target)

            if self.rng.random() > 0.7:
                request.cid = await self._store_quietly(json.dumps({
                    "sourceService": service.id,
                    "targetService": target.id,
                    "request": request.id,
                    "requestType": request.type,
                    "timestamp": now_ms(),
                    "payload": request.payload,
                }), {"type": "service-activity", "timestamp": now_ms()})

        if self.rng.random() > 0.8:
            await self._store_quietly(json.dumps({
                "services": [s.to_dict() for s in self._services.values()],
                "timestamp": now_ms(),
                "metrics": self.get_metrics(),
            }), {"type": "system-metrics", "timestamp": now_ms()})

        if len(self._requests) > MAX_STORED_REQUESTS:
            self._requests = self._requests[-MAX_STORED_REQUESTS:]

    # ==================== Queries ====================

    async def _hop_pause(self) -> None:
        low, high = self.hop_delay
        if high > 0:
            await asyncio.sleep(low + self.rng.random() * (high - low))

    def _pick_online(self, service_type: str) -> Optional[BackendService]:
        candidates = [s for s in self._of_type(service_type) if s.status == "online"]
        return self.rng.choice(candidates) if candidates else None

    async def process_backend_query(self, query: str,
                                    source_service_id: Optional[str] = None) -> QueryResult:
        """
        Route a query through backend services and the network.

        Path: client, api service, up to two connected services, storage,
        compute, relay node, assistant, content-store node, analytics,
        compute, api service, client.

        Raises:
            KeyError: If source_service_id is unknown
            NoPathError: If the network has no relay route to the assistant
        """
        if not self._initialized:
            await self.initialize(auto_start=False)

        started = time.monotonic()
        processing_path = [CLIENT_ID]

        if source_service_id is None:
            api = self._pick_online("api")
            source_service_id = api.id if api else next(iter(self._services))
        source = self._services.get(source_service_id)
        if source is None:
            raise KeyError(f"Source service not found: {source_service_id}")

        source.record_request()
        processing_path.append(source.id)

        request = ServiceRequest(
            id=self._new_request_id(),
            service_id=source.id,
            type="query",
            payload=query,
        )
        self._requests.append(request)

        current = source
        for _ in range(2):
            if not current.connections:
                break
            next_service = self._services.get(self.rng.choice(current.connections))
            if next_service is None:
                break
            next_service.record_request()
            processing_path.append(next_service.id)
            current = next_service
            await self._hop_pause()

        storage = self._pick_online("storage")
        if storage:
            storage.record_request()
            processing_path.append(storage.id)

        query_cid = await self.content_store.put(query, {
            "type": "backend-query",
            "timestamp": now_ms(),
            "path": "->".join(processing_path),
        })

        compute = self._pick_online("compute")
        if compute:
            compute.record_request()
            processing_path.append(compute.id)

        relay_id, store_id = self.orchestrator.choose_route()
        processing_path.append(relay_id)
        await self.message_bus.send(relay_id, ASSISTANT_NODE_ID, "query", query_cid)
        processing_path.append(ASSISTANT_NODE_ID)

        response = self.rng.choice(RESPONSE_TEMPLATES).format(
            snippet=query[:20], hops=len(processing_path))

        await self.message_bus.send(ASSISTANT_NODE_ID, store_id, "storage", response)
        processing_path.append(store_id)

        response_cid = await self.content_store.put(response, {
            "type": "backend-response",
            "queryId": query_cid,
            "timestamp": now_ms(),
            "path": "->".join(processing_path),
            "serviceMetrics": {
                "servicesInvolved": sum(1 for p in processing_path if p in self._services),
                "nodesInvolved": sum(1 for p in processing_path
                                     if self.message_bus.network.get_node(p) is not None),
                "processingTime": (time.monotonic() - started) * 1000,
            },
        })
        await self.content_store.update_metadata(query_cid, {
            "responseCid": response_cid,
            "processed": True,
            "timestamp": now_ms(),
        })

        for service in (self._pick_online("analytics"), compute, source):
            if service:
                service.record_request()
                processing_path.append(service.id)
        processing_path.append(CLIENT_ID)

        request.completed = True
        request.response_time = now_ms() - request.timestamp
        request.cid = response_cid
        source.avg_response_time = round(source.avg_response_time * 0.7 + request.response_time * 0.3)

        processing_time = (time.monotonic() - started) * 1000
        logger.info(f"Backend query processed in {processing_time:.0f}ms through {len(processing_path)} steps")
        return QueryResult(
            response=response,
            response_cid=response_cid,
            processing_path=processing_path,
            processing_time=processing_time,
        )

    def get_services(self) -> List[BackendService]:
        return list(self._services.values())

    def get_service(self, service_id: str) -> Optional[BackendService]:
        return self._services.get(service_id)

    def get_service_requests(self, limit: int = 20) -> List[ServiceRequest]:
        """Most recent requests first."""
        return sorted(self._requests, key=lambda r: r.timestamp, reverse=True)[:limit]

    def subscribe(self,
                  listener: Callable[[BackendService, Optional[ServiceRequest]], None]) -> Callable[[], bool]:
        """Register listener(service, request) for service updates."""
        def on_update(event: ServiceUpdatedEvent) -> None:
            listener(event.service, event.request)

        return self.event_bus.subscribe("service.updated", on_update)

    def get_metrics(self) -> Dict[str, Any]:
        """Aggregate counters and response-time statistics."""
        services = list(self._services.values())
        response_times = np.array([s.avg_response_time for s in services], dtype=np.float64)
        return {
            "total_services": len(services),
            "active_services": sum(1 for s in services if s.status == "online"),
            "degraded_services": sum(1 for s in services if s.status == "degraded"),
            "total_requests": len(self._requests),
            "avg_response_time": int(round(float(response_times.mean()))) if services else 0,
            "p95_response_time": float(np.percentile(response_times, 95)) if services else 0.0,
            "requests_by_type": dict(Counter(r.type for r in self._requests)),
            "services_by_type": dict(Counter(s.type for s in services)),
            "timestamp": now_ms(),
        }


__all__ = [
    "BackendService",
    "ServiceRequest",
    "BackendSimulation",
    "SERVICE_TYPES",
]
