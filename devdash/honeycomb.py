"""Deep links into the Honeycomb query builder for a deployment window.

Nothing here talks to Honeycomb: each link carries a declarative query
(time window, calculations, breakdowns, filters) serialized into the URL, so
the UI opens with the query already run.
"""
import json
import urllib.parse
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .config import HoneycombSettings
from .errors import ValidationError
from .models import HoneycombQueryUrl

HONEYCOMB_UI_US = "https://ui.honeycomb.io"
HONEYCOMB_UI_EU = "https://ui.eu1.honeycomb.io"

GRANULARITY_SECONDS = 60
DEFAULT_LIMIT = 1000
TRACES_LIMIT = 100


@dataclass
class HoneycombConfig:
    team: str
    dataset: str
    environment: Optional[str] = None
    api_endpoint: Optional[str] = None

    @classmethod
    def from_settings(cls, s: HoneycombSettings) -> Optional["HoneycombConfig"]:
        """None unless both team and dataset are set."""
        if not s.team or not s.dataset:
            return None
        return cls(
            team=s.team,
            dataset=s.dataset,
            environment=s.environment or None,
            api_endpoint=s.api_endpoint or None,
        )


# Order matters: links are returned in this order.
QUERY_TEMPLATES: Dict[str, Dict[str, Any]] = {
    "errors": {
        "label": "View Errors",
        "description": "Error rate and failed requests post-deployment",
        "calculations": [{"op": "COUNT"}, {"op": "COUNT"}],
        "breakdowns": ["error", "http.status_code", "service.name"],
        "filters": [{"column": "error", "op": "=", "value": True}],
    },
    "latency": {
        "label": "View Latency",
        "description": "P50/P95 latency breakdown",
        "calculations": [
            {"op": "HEATMAP", "column": "duration_ms"},
            {"op": "P50", "column": "duration_ms"},
            {"op": "P95", "column": "duration_ms"},
            {"op": "P99", "column": "duration_ms"},
        ],
        "breakdowns": ["name", "service.name"],
    },
    "throughput": {
        "label": "View Throughput",
        "description": "Request volume and rate",
        "calculations": [{"op": "COUNT"}, {"op": "AVG", "column": "duration_ms"}],
        "breakdowns": ["name", "http.method", "service.name"],
    },
    "traces": {
        "label": "View Traces",
        "description": "Sample traces for investigation",
        "calculations": [{"op": "COUNT"}],
        "breakdowns": ["trace.trace_id", "name"],
    },
}


def parse_deployment_time(value: str) -> datetime:
    """ISO-8601 timestamp (``Z`` suffix allowed). Naive values are taken as UTC."""
    try:
        dt = datetime.fromisoformat((value or "").strip().replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(f"Invalid deploymentDate: {value!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _dataset_path(config: HoneycombConfig) -> str:
    if config.environment:
        return f"{config.team}/environments/{config.environment}/datasets/{config.dataset}"
    return f"{config.team}/datasets/{config.dataset}"


def build_query_url(config: HoneycombConfig, query_spec: Dict[str, Any], is_eu: bool = False) -> str:
    base = HONEYCOMB_UI_EU if is_eu else HONEYCOMB_UI_US
    encoded = urllib.parse.quote(json.dumps(query_spec, separators=(",", ":")), safe="")
    return f"{base}/{_dataset_path(config)}?query={encoded}"


def build_trace_url(config: HoneycombConfig, trace_id: str, is_eu: bool = False) -> str:
    base = HONEYCOMB_UI_EU if is_eu else HONEYCOMB_UI_US
    return f"{base}/{_dataset_path(config)}/trace?trace_id={urllib.parse.quote(trace_id, safe='')}"


def build_query_spec(
    query_type: str,
    start_time: int,
    end_time: int,
    service_filter: Optional[str] = None,
) -> Dict[str, Any]:
    template = QUERY_TEMPLATES[query_type]
    spec: Dict[str, Any] = {
        "start_time": start_time,
        "end_time": end_time,
        "granularity": GRANULARITY_SECONDS,
        "calculations": [dict(c) for c in template["calculations"]],
        "breakdowns": list(template["breakdowns"]),
        "filter_combination": "AND",
        "filters": [dict(f) for f in template.get("filters", [])],
        "limit": DEFAULT_LIMIT,
    }
    if service_filter:
        spec["filters"].append({"column": "service.name", "op": "=", "value": service_filter})
    if query_type == "traces":
        spec["orders"] = [{"order": "descending"}]
        spec["limit"] = TRACES_LIMIT
    return spec


def generate_deployment_queries(
    config: HoneycombConfig,
    deployment_date: str,
    *,
    window_hours: float = 1,
    is_eu: bool = False,
    service_filter: Optional[str] = None,
) -> List[HoneycombQueryUrl]:
    """One link per template covering [deployment, deployment + window]."""
    start = int(parse_deployment_time(deployment_date).timestamp())
    end = int(start + window_hours * 60 * 60)

    out: List[HoneycombQueryUrl] = []
    for qtype, template in QUERY_TEMPLATES.items():
        spec = build_query_spec(qtype, start, end, service_filter)
        out.append(
            HoneycombQueryUrl(
                type=qtype,
                label=template["label"],
                description=template["description"],
                url=build_query_url(config, spec, is_eu),
            )
        )
    return out


def map_component_to_service(component_name: str) -> str:
    """Heuristic: Honeycomb service names are lower-kebab component names."""
    return component_name.lower().replace("_", "-")


def generate_component_queries(
    config: HoneycombConfig,
    component_name: str,
    deployment_date: str,
    *,
    window_hours: float = 1,
    is_eu: bool = False,
) -> List[HoneycombQueryUrl]:
    return generate_deployment_queries(
        config,
        deployment_date,
        window_hours=window_hours,
        is_eu=is_eu,
        service_filter=map_component_to_service(component_name),
    )
