"""
Grafana OTLP Metrics Exporter
==============================

Pushes pipeline analytics and LLM usage gauges to Grafana Cloud via OTLP/HTTP.

Metrics exported (all as gauges):
- llm_tokens_total, llm_latency_ms: triage classifier usage
- solution_time_to_resolve_hours, solution_steps_count, solution_resources_count
- rating_value, rating_category_average
- ticket_status_changes_total

An exporter without credentials is disabled and every export call is a
no-op returning False.
"""

import base64
import time
from typing import Dict, Mapping, Optional

import httpx

from ticketflow.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class PipelineMetricsExporter:
    """
    Export gauges to Grafana Cloud via the OTLP HTTP endpoint.

    Uses OpenTelemetry Protocol (OTLP) JSON format for metrics.
    """

    def __init__(
        self,
        host: Optional[str] = None,
        api_key: Optional[str] = None,
        instance_id: Optional[str] = None,
        service_name: str = "ticketflow",
        service_version: str = "1.0.0",
        environment: str = "development",
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize Grafana OTLP exporter.

        Args:
            host: Grafana OTLP gateway URL
            api_key: Grafana API key
            instance_id: Instance ID for authentication
            http_client: Optional preconfigured client (tests inject a MockTransport)
        """
        self._host = host
        self._api_key = api_key
        self._instance_id = instance_id
        self._service_name = service_name
        self._service_version = service_version
        self._environment = environment
        self._enabled = bool(host and api_key and instance_id)
        self._http_client = http_client
        self._owns_client = http_client is None

        if self._enabled:
            auth_pair = f"{instance_id}:{api_key}"
            self._auth_encoded = base64.b64encode(auth_pair.encode()).decode()
            # Don't double-append the path if host already includes it
            if "/otlp/v1/metrics" not in host:
                self._url = f"{host.rstrip('/')}/otlp/v1/metrics"
            else:
                self._url = host
            logger.info(
                "Grafana OTLP exporter initialized",
                extra={"host": host, "instance_id": instance_id}
            )
        else:
            logger.info(
                "Grafana OTLP exporter not configured - metrics will not be exported",
                extra={
                    "host_configured": bool(host),
                    "api_key_configured": bool(api_key),
                    "instance_id_configured": bool(instance_id)
                }
            )

    def is_enabled(self) -> bool:
        """Check if exporter is properly configured."""
        return self._enabled

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=10.0)
        return self._http_client

    def _build_payload(
        self,
        gauges: Mapping[str, float],
        attributes: Optional[Dict[str, str]] = None
    ) -> dict:
        timestamp_ns = int(time.time() * 1_000_000_000)
        metric_attributes = [
            {"key": "service", "value": {"stringValue": self._service_name}},
        ]
        for key, value in (attributes or {}).items():
            metric_attributes.append({"key": key, "value": {"stringValue": str(value)}})

        metrics = []
        for name, value in gauges.items():
            data_point = {"timeUnixNano": timestamp_ns, "attributes": metric_attributes}
            if isinstance(value, int) and not isinstance(value, bool):
                data_point["asInt"] = value
            else:
                data_point["asDouble"] = float(value)
            metrics.append({"name": name, "gauge": {"dataPoints": [data_point]}})

        return {
            "resourceMetrics": [
                {
                    "resource": {
                        "attributes": [
                            {"key": "service.name", "value": {"stringValue": self._service_name}},
                            {"key": "service.version", "value": {"stringValue": self._service_version}},
                            {"key": "deployment.environment", "value": {"stringValue": self._environment}},
                        ]
                    },
                    "scopeMetrics": [{"metrics": metrics}]
                }
            ]
        }

    async def export_gauges(
        self,
        gauges: Mapping[str, float],
        attributes: Optional[Dict[str, str]] = None
    ) -> bool:
        """
        Export a batch of gauges sharing one attribute set.

        Args:
            gauges: Metric name to value
            attributes: Additional attributes to attach to every data point

        Returns:
            True if export succeeded, False otherwise (never raises)
        """
        if not self._enabled or not gauges:
            return False

        payload = self._build_payload(gauges, attributes)
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Basic {self._auth_encoded}",
            "X-Grafana-Org-Id": str(self._instance_id)
        }

        try:
            client = await self._get_client()
            response = await client.post(self._url, headers=headers, json=payload)
        except httpx.HTTPError as e:
            logger.error(
                "Error exporting metrics to Grafana",
                extra={"error": str(e), "metrics": list(gauges)}
            )
            return False

        if response.status_code in (200, 202):
            logger.debug(
                "Metrics exported to Grafana",
                extra={"metrics": list(gauges), "status_code": response.status_code}
            )
            return True

        logger.warning(
            "Failed to export metrics to Grafana",
            extra={
                "status_code": response.status_code,
                "response": response.text[:500],
                "url": self._url
            }
        )
        return False

    async def export_llm_metrics(
        self,
        model: str,
        prompt_tokens: int,
        completion_tokens: int,
        latency_ms: int,
        operation: str = "triage"
    ) -> bool:
        """Export LLM usage metrics for one completion."""
        return await self.export_gauges(
            {
                "llm_tokens_total": prompt_tokens + completion_tokens,
                "llm_prompt_tokens": prompt_tokens,
                "llm_completion_tokens": completion_tokens,
                "llm_latency_ms": latency_ms,
            },
            {"model": model, "operation": operation}
        )

    async def close(self) -> None:
        """Close HTTP client if this exporter created it."""
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None
