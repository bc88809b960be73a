"""Datadog Incidents API client."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import httpx
import structlog

from doratrack.sync.sources import IncidentPayload

logger = structlog.get_logger()


class DatadogIncidentClient:
    """Implements :class:`IncidentSource` over ``/api/v2/incidents``."""

    def __init__(
        self,
        api_key: str,
        application_key: str,
        base_url: str = "https://us5.datadoghq.com",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._headers = {"DD-API-KEY": api_key, "DD-APPLICATION-KEY": application_key}
        self._timeout = timeout
        self._transport = transport

    async def fetch_incidents(self, service_name: str, since: datetime) -> list[IncidentPayload]:
        params = {"filter[since]": since.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")}
        if service_name.strip():
            params["filter[query]"] = f"service:{service_name}"
        async with httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._headers,
            timeout=self._timeout,
            transport=self._transport,
        ) as client:
            resp = await client.get("/api/v2/incidents", params=params)
            resp.raise_for_status()
            data = resp.json().get("data") or []
        incidents = [_incident_payload(item) for item in data]
        logger.info("datadog.incidents_fetched", service=service_name, count=len(incidents))
        return incidents


def _field_value(attributes: dict[str, Any], name: str) -> str:
    fields = attributes.get("fields") or {}
    return (fields.get(name) or {}).get("value") or ""


def _incident_payload(item: dict[str, Any]) -> IncidentPayload:
    attributes = item.get("attributes") or {}
    return IncidentPayload(
        id=str(item["id"]),
        title=attributes.get("title") or "",
        state=attributes.get("state") or _field_value(attributes, "state"),
        severity=attributes.get("severity") or _field_value(attributes, "severity"),
        created_at=attributes["created"],
        resolved_at=attributes.get("resolved"),
    )
