"""
Query orchestrator: a scripted trip through the simulated network.

    client -> relay -> assistant -> content-store -> relay -> client

The query and the response are both stored as content; the response record
points at the query (queryId) and the query record is updated to point back
(responseCid). "client" is a synthetic label, not a node, so its legs are
recorded in the processing path without going over the message bus. Every
other hop is a real send and the orchestrator waits for its delivery.
"""

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .assistant import Assistant
from .content_store import ContentStore
from .errors import ExternalServiceError, NoPathError
from .message_bus import MessageBus
from .models import now_ms
from .network import NetworkGraph, ASSISTANT_NODE_ID

logger = logging.getLogger(__name__)

CLIENT_ID = "client"

FALLBACK_RESPONSE = "Sorry, I couldn't get a response from the assistant."


@dataclass
class QueryResult:
    """Outcome of an orchestrated query."""
    response: str
    response_cid: str
    processing_path: List[str] = field(default_factory=list)
    processing_time: float = 0.0  # milliseconds

    def to_dict(self) -> Dict[str, Any]:
        return {
            "response": self.response,
            "response_cid": self.response_cid,
            "processing_path": list(self.processing_path),
            "processing_time": self.processing_time,
        }


class QueryOrchestrator:
    """
    Strings content-store writes and message-bus sends into a displayable
    processing path around an assistant call.
    """

    def __init__(self,
                 network: NetworkGraph,
                 content_store: ContentStore,
                 message_bus: MessageBus,
                 assistant: Assistant,
                 rng: Optional[random.Random] = None,
                 assistant_node_id: str = ASSISTANT_NODE_ID):
        self.network = network
        self.content_store = content_store
        self.message_bus = message_bus
        self.assistant = assistant
        self.rng = rng or random.Random()
        self.assistant_node_id = assistant_node_id

    def choose_route(self) -> Tuple[str, str]:
        """
        Pick a relay and a content-store node for the round trip.

        The relay is an active standard node that reaches the assistant; the
        content-store node is reachable from the assistant and reaches the
        relay. The assistant itself must be active.

        Raises:
            NoPathError: If no such pair exists in the current snapshot
        """
        assistant = self.network.get_node(self.assistant_node_id)
        if assistant is None or not assistant.is_active:
            raise NoPathError(CLIENT_ID, self.assistant_node_id)

        stores = [n.id for n in self.network.nodes_of_type("content-store", active_only=True)
                  if self.network.can_reach(self.assistant_node_id, n.id)]
        candidates = []
        for relay in self.network.nodes_of_type("standard", active_only=True):
            if not self.network.can_reach(relay.id, self.assistant_node_id):
                continue
            reachable = [s for s in stores if self.network.can_reach(s, relay.id)]
            if reachable:
                candidates.append((relay.id, reachable))

        if not candidates:
            raise NoPathError(CLIENT_ID, self.assistant_node_id)

        relay_id, reachable = self.rng.choice(candidates)
        return relay_id, self.rng.choice(reachable)

    async def _respond(self, query: str) -> str:
        try:
            return await self.assistant.ask(query)
        except ExternalServiceError as e:
            logger.error(f"Error calling assistant: {e}")
            self.assistant.reset()
            return f"{FALLBACK_RESPONSE} ({e})"

    async def process_query(self, query: str) -> QueryResult:
        """
        Route a query through the network and return the assistant's answer.

        Returns:
            QueryResult with response, response CID, processing path and
            elapsed milliseconds

        Raises:
            NoPathError: If no relay route to the assistant exists
            NotFoundError, InvalidOperationError: If a hop fails
        """
        started = time.monotonic()
        logger.info(f"Processing query: {query[:50]}")

        query_cid = await self.content_store.put(query, {
            "type": "query",
            "timestamp": now_ms(),
        })

        relay_id, store_id = self.choose_route()
        processing_path = [CLIENT_ID, relay_id]

        await self.message_bus.send(relay_id, self.assistant_node_id, "query", query_cid)
        processing_path.append(self.assistant_node_id)

        response = await self._respond(query)

        response_cid = await self.content_store.put(response, {
            "type": "response",
            "queryId": query_cid,
            "timestamp": now_ms(),
            "path": "->".join(processing_path),
        })
        await self.content_store.update_metadata(query_cid, {
            "responseCid": response_cid,
            "processed": True,
            "timestamp": now_ms(),
        })

        await self.message_bus.send(self.assistant_node_id, store_id, "storage", response_cid)
        processing_path.append(store_id)

        await self.message_bus.send(store_id, relay_id, "response", response_cid)
        processing_path.append(relay_id)
        processing_path.append(CLIENT_ID)

        processing_time = (time.monotonic() - started) * 1000
        logger.info(f"Query processed in {processing_time:.0f}ms through {len(processing_path)} hops")

        return QueryResult(
            response=response,
            response_cid=response_cid,
            processing_path=processing_path,
            processing_time=processing_time,
        )


__all__ = ["QueryOrchestrator", "QueryResult", "CLIENT_ID", "FALLBACK_RESPONSE"]
