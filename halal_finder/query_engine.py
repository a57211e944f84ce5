"""Issue both provider queries for one (origin, radius) and collect them."""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, List, Optional, Tuple

from .models import Place, ProviderBatch
from .retry import ClientRetryOrchestrator

logger = logging.getLogger(__name__)


class ProviderQueryEngine:
    def __init__(
        self,
        overpass_client: Any,
        places_client: Any,
        orchestrator: Optional[ClientRetryOrchestrator] = None,
    ) -> None:
        self.overpass = overpass_client
        self.places = places_client
        self.orchestrator = orchestrator or ClientRetryOrchestrator()

    def _run(self, name: str, search: Callable[[], List[Place]]) -> ProviderBatch:
        outcome = self.orchestrator.execute(search, name)
        if outcome.ok:
            return list(outcome.value or [])
        logger.warning(
            "%s degraded to an empty batch (kind=%s, attempts=%s)",
            name,
            outcome.kind.value if outcome.kind else None,
            outcome.attempts,
        )
        return []

    def query(self, latitude: float, longitude: float, radius_m: int) -> Tuple[ProviderBatch, ProviderBatch]:
        """Return (overpass_batch, places_batch); never raises."""
        tasks = (
            ("overpass search", lambda: self.overpass.search(latitude, longitude, radius_m)),
            ("places search", lambda: self.places.search(latitude, longitude, radius_m)),
        )
        batches: List[ProviderBatch] = []
        with ThreadPoolExecutor(max_workers=len(tasks)) as pool:
            futures = [pool.submit(self._run, name, fn) for name, fn in tasks]
            # collected in submission order so merges stay deterministic
            for (name, _), future in zip(tasks, futures):
                try:
                    batches.append(future.result())
                except Exception:
                    logger.exception("%s crashed; using an empty batch", name)
                    batches.append([])
        return batches[0], batches[1]
