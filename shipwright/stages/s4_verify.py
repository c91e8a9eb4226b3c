"""Stage 4 — Health Verification.

After a fixed grace period, probes the Instance once over HTTP.  A failed
probe is a warning: the stage ends DEGRADED and the run still succeeds.
Nothing is rolled back.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

import httpx
from pydantic import ValidationError

from shipwright.models.catalog import ProductList
from shipwright.models.config import PipelineConfig
from shipwright.models.reports import ProbeResult
from shipwright.stages.base import BaseStage

logger = logging.getLogger(__name__)


def probe(client: httpx.Client, url: str, *, timeout: float) -> tuple[ProbeResult, httpx.Response | None]:
    """``GET`` *url* once and expect a 2xx response."""
    started = time.monotonic()
    try:
        response = client.get(url, timeout=timeout)
    except httpx.HTTPError as exc:
        elapsed = int((time.monotonic() - started) * 1000)
        return (
            ProbeResult(url=url, ok=False, error=f"{type(exc).__name__}: {exc}", elapsed_ms=elapsed),
            None,
        )

    elapsed = int((time.monotonic() - started) * 1000)
    ok = response.is_success
    return (
        ProbeResult(
            url=url,
            ok=ok,
            status_code=response.status_code,
            error="" if ok else f"HTTP {response.status_code}",
            elapsed_ms=elapsed,
        ),
        response,
    )


class HealthVerifyStage(BaseStage):
    """Stage 4: confirm the Instance answers on its published port."""

    stage_id = "verify"
    display_name = "Health Verification"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        """Wait the grace period, then probe liveness and the catalog.

        Reads ``http_client`` (an ``httpx.Client``) and ``sleep`` from
        *run_context* when present.
        """
        config: PipelineConfig = run_context["run_config"].pipeline_config
        sleep: Callable[[float], None] = run_context.get("sleep") or time.sleep

        if config.grace_period_seconds > 0:
            logger.info("Waiting %.1fs before probing", config.grace_period_seconds)
            sleep(config.grace_period_seconds)

        client: httpx.Client | None = run_context.get("http_client")
        if client is not None:
            return self._verify(client, config)
        with httpx.Client() as owned:
            return self._verify(owned, config)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _verify(self, client: httpx.Client, config: PipelineConfig) -> dict[str, Any]:
        warnings: list[str] = []
        probes: list[ProbeResult] = []

        liveness, _ = probe(
            client, config.probe_url(config.liveness_path), timeout=config.probe_timeout_seconds
        )
        probes.append(liveness)
        product_count: int | None = None

        if not liveness.ok:
            warnings.append(f"Liveness probe {liveness.url} failed: {liveness.error}")
        elif config.catalog_path:
            catalog, response = probe(
                client, config.probe_url(config.catalog_path), timeout=config.probe_timeout_seconds
            )
            probes.append(catalog)
            if not catalog.ok or response is None:
                warnings.append(f"Catalog probe {catalog.url} failed: {catalog.error}")
            else:
                try:
                    product_count = len(ProductList.validate_json(response.content))
                except ValidationError as exc:
                    warnings.append(
                        f"Catalog at {catalog.url} is malformed: {exc.error_count()} error(s)"
                    )

        for message in warnings:
            logger.warning(message)
        if not warnings:
            logger.info("Instance %s is healthy", config.instance_name)

        return {
            "healthy": not warnings,
            "probes": [p.model_dump(mode="json") for p in probes],
            "product_count": product_count,
            "warnings": warnings,
        }
