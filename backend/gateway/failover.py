"""
Endpoint Failover - try each upstream for a resource until one answers

Candidates are walked in priority order. A timeout, a bad status or a payload
the parser rejects all move on to the next candidate; the first success wins and
nothing after it is called.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote

from .errors import AggregateUpstreamFailure, UpstreamError, UpstreamPayloadError
from .fetch_client import FetchClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UpstreamCandidate:
    """One URL that can serve a logical resource. Lower priority is tried first."""
    url: str
    priority: int = 0

    def render(self, url_params: Optional[Dict[str, str]] = None) -> str:
        if not url_params:
            return self.url
        # Values are path / query fragments; quote so they cannot add parameters
        return self.url.format(**{k: quote(str(v), safe="") for k, v in url_params.items()})


@dataclass
class FailoverResult:
    payload: Any
    candidate: UpstreamCandidate
    attempts: int
    elapsed: float


class EndpointFailoverFetcher:
    """
    Walks an ordered candidate list with a FetchClient.

    The optional `parse` callback turns the raw body into the value the caller
    wants; ValueError / KeyError / TypeError from it count as a candidate failure.
    """

    def __init__(self, client: FetchClient):
        self._client = client
        self._stats = {
            "fetches": 0,
            "failovers": 0,
            "aggregate_failures": 0,
        }

    async def fetch(
        self,
        candidates: Sequence[UpstreamCandidate],
        timeout: float,
        *,
        resource: str = "upstream",
        method: str = "GET",
        params: Optional[Dict] = None,
        json: Any = None,
        url_params: Optional[Dict[str, str]] = None,
        parse: Optional[Callable[[Any], Any]] = None,
    ) -> FailoverResult:
        """
        Returns the first successful (parsed) payload and the candidate that served it.

        Raises:
            AggregateUpstreamFailure: every candidate failed, with per-candidate reasons
        """
        self._stats["fetches"] += 1
        started = time.monotonic()
        failures: List[Tuple[str, str]] = []

        # sorted() is stable, so equal priorities keep their configured order
        ordered = sorted(candidates, key=lambda c: c.priority)

        for attempt, candidate in enumerate(ordered, start=1):
            try:
                url = candidate.render(url_params)
            except (KeyError, IndexError, ValueError) as e:
                reason = f"bad url template ({type(e).__name__}: {e})"
                failures.append((candidate.url, reason))
                logger.error(f"Upstream attempt skipped: resource={resource} attempt={attempt} url={candidate.url} reason={reason}")
                continue

            try:
                body = await self._client.request(method, url, params=params, json=json, timeout=timeout)
                payload = parse(body) if parse else body
            except UpstreamError as e:
                failures.append((url, e.reason))
                logger.warning(f"Upstream attempt failed: resource={resource} attempt={attempt} url={url} reason={e.reason}")
                continue
            except (ValueError, KeyError, TypeError) as e:
                reason = UpstreamPayloadError(url, str(e)).reason
                failures.append((url, reason))
                logger.warning(f"Upstream attempt failed: resource={resource} attempt={attempt} url={url} reason={reason}")
                continue

            if attempt > 1:
                self._stats["failovers"] += 1
                logger.info(f"Failover succeeded: resource={resource} url={url} attempt={attempt}")

            return FailoverResult(
                payload=payload,
                candidate=candidate,
                attempts=attempt,
                elapsed=time.monotonic() - started,
            )

        self._stats["aggregate_failures"] += 1
        logger.error(f"All upstreams failed: resource={resource} candidates={len(ordered)}")
        raise AggregateUpstreamFailure(resource, failures)

    def get_stats(self) -> Dict:
        return dict(self._stats)
