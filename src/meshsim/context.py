"""
SimulationContext: the explicit owner of all simulation state.

Nothing is created at import time. A context is constructed from a
SimulationConfig, opened, optionally reset, and closed:

    async with SimulationContext(SimulationConfig.load()) as ctx:
        cid = await ctx.content_store.put("hello")
        result = await ctx.orchestrator.process_query("what is a CID?")
"""

import logging
import random
from typing import Optional

from .assistant import Assistant, CannedAssistant, GenerativeAPIAssistant
from .backend_services import BackendSimulation
from .config import SimulationConfig
from .content_store import ContentStore
from .event_bus import EventBus
from .message_bus import DeliveryPolicy, MessageBus
from .network import NetworkGraph
from .orchestrator import QueryOrchestrator
from .persistence import InMemoryBackend, Persistence, RetryPolicy, SQLiteBackend

logger = logging.getLogger(__name__)


def build_assistant(config: SimulationConfig, rng: Optional[random.Random] = None) -> Assistant:
    """Assistant for the configured provider."""
    if config.assistant_provider == "canned":
        return CannedAssistant(rng=rng)
    if config.assistant_provider == "generative":
        return GenerativeAPIAssistant(
            api_key=config.assistant_api_key,
            model=config.assistant_model,
            base_url=config.assistant_base_url,
            timeout=config.assistant_timeout,
            max_output_tokens=config.assistant_max_output_tokens,
        )
    raise ValueError(f"Unknown assistant provider: {config.assistant_provider}")


class SimulationContext:
    """
    Composes persistence, content store, network, message bus, orchestrator
    and the optional backend services simulation.

    Args:
        config: Resolved settings (SimulationConfig() gives in-memory defaults)
        assistant: Override the configured assistant, e.g. a test double
        persistence: Override the configured persistence
    """

    def __init__(self,
                 config: Optional[SimulationConfig] = None,
                 assistant: Optional[Assistant] = None,
                 persistence: Optional[Persistence] = None):
        self.config = config or SimulationConfig()
        self.rng = random.Random(self.config.seed)

        if persistence is None:
            backend = SQLiteBackend(self.config.db_path) if self.config.db_path else InMemoryBackend()
            persistence = Persistence(
                backend,
                retry_policy=RetryPolicy(
                    max_attempts=self.config.retry_attempts,
                    delay=self.config.retry_delay,
                ),
                fallback=self.config.fallback,
            )
        self.persistence = persistence

        self.event_bus = EventBus()
        self.content_store = ContentStore(self.persistence)
        self.network = NetworkGraph(self.persistence, rng=self.rng)
        self.message_bus = MessageBus(
            self.network,
            self.persistence,
            event_bus=self.event_bus,
            delivery_policy=DeliveryPolicy(
                min_delay=self.config.min_delay,
                max_delay=self.config.max_delay,
                rng=self.rng,
            ),
        )
        self.assistant = assistant or build_assistant(self.config, rng=self.rng)
        self.orchestrator = QueryOrchestrator(
            self.network,
            self.content_store,
            self.message_bus,
            self.assistant,
            rng=self.rng,
        )
        self.backend = BackendSimulation(
            self.content_store,
            self.message_bus,
            self.orchestrator,
            event_bus=self.event_bus,
            rng=self.rng,
            tick_interval=self.config.tick_interval,
        )
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    async def open(self) -> "SimulationContext":
        """Open persistence and load (or build) the network."""
        if self._open:
            return self
        await self.persistence.open()
        await self.network.load_or_initialize()
        if self.config.backend_enabled:
            await self.backend.initialize()
        self._open = True
        return self

    async def reset(self) -> None:
        """Wait for in-flight sends, stop background work, wipe stored state
        and build a fresh network."""
        await self.backend.shutdown()
        await self.message_bus.wait_idle()
        await self.persistence.clear_all()
        self.network.reset()
        self.assistant.reset()
        await self.network.initialize()
        if self.config.backend_enabled:
            await self.backend.initialize(force=True)
        logger.info("Simulation reset")

    async def close(self) -> None:
        await self.backend.shutdown()
        await self.message_bus.wait_idle()
        await self.persistence.close()
        self.event_bus.clear()
        self._open = False

    async def __aenter__(self) -> "SimulationContext":
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


__all__ = ["SimulationContext", "build_assistant"]
