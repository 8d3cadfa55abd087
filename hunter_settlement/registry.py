"""
registry.py — Service discovery and the hunter's own registration.

The registry is an input-only collaborator for the negotiation: the
workflow asks it for candidates and never trusts it for anything that
moves money. Writes to the registry (agent registration, per-service
feedback) are best-effort: they are attempted once, failures are logged
and reported as False, and no caller's success depends on them.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol, Sequence

import httpx

from .config import HunterConfig
from .errors import HunterError, InternalError
from .models import AgentIdentity, ServiceInfo
from .transport import raise_for_status, with_retries

logger = logging.getLogger("hunter_settlement.registry")


class ServiceDirectory(Protocol):
    async def lookup(self, task_type: Optional[str] = None) -> list[ServiceInfo]: ...

    async def advertise(self, service: ServiceInfo, ttl_seconds: int) -> None: ...

    async def register_agent(self, identity: AgentIdentity) -> bool: ...

    async def submit_service_feedback(
        self,
        service_id: str,
        hunter_id: str,
        mission_id: str,
        score: int,
        task_type: str,
        comment: Optional[str] = None,
    ) -> bool: ...


def build_agent_identity(
    config: HunterConfig,
    wallet_address: str,
    registered_at: int,
) -> AgentIdentity:
    """Describe the hunter. ``registered_at`` is supplied by the caller at startup."""
    agent_id = config.agent_id or f"{config.chain_id}:{wallet_address.lower()}"
    return AgentIdentity(
        agent_id=agent_id,
        name=config.agent_name,
        description=config.agent_description,
        wallet_address=wallet_address,
        registered_at=registered_at,
    )


def _services_from_payload(payload: Any) -> list[ServiceInfo]:
    items = payload.get("services") if isinstance(payload, dict) else None
    if not isinstance(items, list):
        raise InternalError(
            "Service registry must contain services[]",
            code="REGISTRY_INVALID_FORMAT",
        )
    services = []
    for item in items:
        try:
            services.append(ServiceInfo.from_dict(item))
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Skipping malformed registry entry %r: %s", item, exc)
    return services


class RegistryClient:
    """HTTP client for the registry service. Pass http_client in tests."""

    def __init__(self, base_url: str, http_client: Optional[httpx.AsyncClient] = None, timeout: float = 10.0):
        self._base_url = base_url.rstrip("/")
        self._http = http_client or httpx.AsyncClient(
            headers={"Content-Type": "application/json", "X-Client": "hunter-settlement/0.1.0"},
            timeout=timeout,
        )

    async def lookup(self, task_type: Optional[str] = None) -> list[ServiceInfo]:
        """
        List advertised services, optionally only those for ``task_type``
        (untyped services always match).
        """
        async def _call() -> Any:
            resp = await self._http.get(f"{self._base_url}/services")
            raise_for_status(resp, "lookup", InternalError)
            try:
                return resp.json()
            except ValueError as exc:
                raise InternalError(
                    "Service registry JSON is invalid", code="REGISTRY_INVALID_JSON"
                ) from exc

        payload = await with_retries(_call, label="registry lookup")
        services = _services_from_payload(payload)
        if task_type:
            services = [s for s in services if not s.task_type or s.task_type == task_type]
        logger.info("Registry lookup: %d services (taskType=%s)", len(services), task_type or "*")
        return services

    async def advertise(self, service: ServiceInfo, ttl_seconds: int) -> None:
        async def _call() -> None:
            resp = await self._http.post(
                f"{self._base_url}/services/register",
                json={"agentId": service.provider.lower(), "service": service.to_dict(), "ttlSeconds": ttl_seconds},
            )
            raise_for_status(resp, "advertise", InternalError)

        # re-registering the same service id replaces the entry
        await with_retries(_call, label="registry advertise")
        logger.info("Advertised service %s (ttl=%ds)", service.id, ttl_seconds)

    async def register_agent(self, identity: AgentIdentity) -> bool:
        try:
            resp = await self._http.post(f"{self._base_url}/agents/register", json=identity.to_dict())
            raise_for_status(resp, "register_agent", InternalError)
        except (httpx.HTTPError, HunterError) as exc:
            logger.warning("Agent registration failed for %s: %s", identity.agent_id, exc)
            return False
        logger.info("Agent registered: %s", identity.agent_id)
        return True

    async def submit_service_feedback(
        self,
        service_id: str,
        hunter_id: str,
        mission_id: str,
        score: int,
        task_type: str,
        comment: Optional[str] = None,
    ) -> bool:
        try:
            resp = await self._http.post(
                f"{self._base_url}/services/{service_id}/feedback",
                json={
                    "hunterId": hunter_id,
                    "missionId": mission_id,
                    "score": score,
                    "taskType": task_type,
                    "comment": comment,
                },
            )
            raise_for_status(resp, "submit_service_feedback", InternalError)
        except (httpx.HTTPError, HunterError) as exc:
            logger.warning("Registry feedback for %s failed: %s", service_id, exc)
            return False
        return True

    async def aclose(self) -> None:
        await self._http.aclose()


class StaticServiceDirectory:
    """In-process directory over a fixed service list."""

    def __init__(self, services: Sequence[ServiceInfo] = ()):
        self._services: dict[str, ServiceInfo] = {s.id: s for s in services}
        self.registered_agents: list[AgentIdentity] = []
        self.service_feedback: list[dict] = []

    async def lookup(self, task_type: Optional[str] = None) -> list[ServiceInfo]:
        services = list(self._services.values())
        if task_type:
            services = [s for s in services if not s.task_type or s.task_type == task_type]
        return services

    async def advertise(self, service: ServiceInfo, ttl_seconds: int) -> None:
        self._services[service.id] = service

    async def register_agent(self, identity: AgentIdentity) -> bool:
        self.registered_agents.append(identity)
        return True

    async def submit_service_feedback(
        self,
        service_id: str,
        hunter_id: str,
        mission_id: str,
        score: int,
        task_type: str,
        comment: Optional[str] = None,
    ) -> bool:
        self.service_feedback.append(
            {
                "serviceId": service_id,
                "hunterId": hunter_id,
                "missionId": mission_id,
                "score": score,
                "taskType": task_type,
                "comment": comment,
            }
        )
        return True
