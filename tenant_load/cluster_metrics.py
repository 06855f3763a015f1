"""Background sampler for cluster-wide Prometheus metrics during a run."""

from __future__ import annotations

import csv
import logging
import subprocess
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
import requests

DEFAULT_QUERIES: Dict[str, str] = {
    "cluster_cpu_utilisation": "1 - avg(rate(node_cpu_seconds_total{mode=\"idle\"}[5m]))",
    "cluster_memory_utilisation": (
        "1 - sum(node_memory_MemAvailable_bytes) / sum(node_memory_MemTotal_bytes)"
    ),
    "etcd_memory_usage_bytes": "sum(process_resident_memory_bytes{job=\"etcd\"})",
    "kube_apiserver_memory_bytes": (
        "sum(container_memory_working_set_bytes{namespace=\"openshift-kube-apiserver\",container=\"\"})"
    ),
    "host_operator_cpu": (
        "sum(rate(container_cpu_usage_seconds_total{namespace=\"toolchain-host-operator\",container=\"\"}[5m]))"
    ),
    "member_operator_cpu": (
        "sum(rate(container_cpu_usage_seconds_total{namespace=\"toolchain-member-operator\",container=\"\"}[5m]))"
    ),
    "application_service_memory_bytes": (
        "sum(container_memory_working_set_bytes{namespace=\"application-service\",container=\"\"})"
    ),
    "build_service_memory_bytes": (
        "sum(container_memory_working_set_bytes{namespace=\"build-service\",container=\"\"})"
    ),
}


def token_from_oc() -> Optional[str]:
    try:
        proc = subprocess.run(
            ["oc", "whoami", "-t"],
            check=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            text=True,
            timeout=15,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        logging.debug("oc whoami -t failed: %s", exc)
        return None
    token = proc.stdout.strip()
    return token or None


def query_instant(
    session: requests.Session, base_url: str, promql: str, *, timeout: float = 30.0
) -> Optional[float]:
    """Run an instant query and return the first sample value, if any."""
    url = f"{base_url.rstrip('/')}/api/v1/query"
    response = session.get(url, params={"query": promql}, timeout=timeout)
    response.raise_for_status()
    payload = response.json()
    if payload.get("status") != "success":
        raise RuntimeError(f"query failed: {payload.get('error', 'unknown error')}")
    result = (payload.get("data") or {}).get("result") or []
    if not result:
        return None
    _, value = result[0].get("value", [None, None])
    return float(value) if value is not None else None


class ClusterMetricsSampler:
    def __init__(
        self,
        base_url: str,
        token: str,
        output_path: Path,
        *,
        queries: Optional[Dict[str, str]] = None,
        interval: float = 60.0,
        verify_tls: bool = False,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url
        self.output_path = output_path
        self.queries = dict(queries or DEFAULT_QUERIES)
        self.interval = max(1.0, interval)
        self.session = session or requests.Session()
        self.session.headers["Authorization"] = f"Bearer {token}"
        self.session.verify = verify_tls
        self.samples: Dict[str, List[float]] = {name: [] for name in self.queries}
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._loop, name="cluster-metrics", daemon=True)

    def sample_once(self) -> Dict[str, Optional[float]]:
        row: Dict[str, Optional[float]] = {}
        for name, promql in self.queries.items():
            try:
                value = query_instant(self.session, self.base_url, promql)
            except (requests.RequestException, RuntimeError, ValueError) as exc:
                logging.warning("[metrics] %s query failed: %s", name, exc)
                value = None
            row[name] = value
            if value is not None:
                self.samples[name].append(value)
        self._append_csv(row)
        return row

    def _append_csv(self, row: Dict[str, Optional[float]]) -> None:
        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        new_file = not self.output_path.exists()
        with self.output_path.open("a", encoding="utf-8", newline="") as fh:
            writer = csv.writer(fh)
            if new_file:
                writer.writerow(["timestamp", *self.queries])
            writer.writerow(
                [datetime.now().strftime("%Y-%m-%dT%H:%M:%S")]
                + ["" if row.get(name) is None else row[name] for name in self.queries]
            )

    def _loop(self) -> None:
        while not self._stop.is_set():
            started = time.monotonic()
            self.sample_once()
            if self._stop.wait(max(0.0, self.interval - (time.monotonic() - started))):
                break

    def start(self) -> "ClusterMetricsSampler":
        logging.info(
            "[metrics] Sampling %d queries every %.0fs into %s",
            len(self.queries),
            self.interval,
            self.output_path,
        )
        self._thread.start()
        return self

    def stop(self) -> Dict[str, Dict[str, float]]:
        self._stop.set()
        if self._thread.is_alive():
            self._thread.join(timeout=self.interval + 5)
        summary = self.summary()
        for name, stats in summary.items():
            logging.info(
                "[metrics] %s min=%.4g avg=%.4g max=%.4g (n=%d)",
                name,
                stats["min"],
                stats["avg"],
                stats["max"],
                stats["samples"],
            )
        return summary

    def summary(self) -> Dict[str, Dict[str, float]]:
        summary: Dict[str, Dict[str, float]] = {}
        for name, values in self.samples.items():
            if not values:
                continue
            arr = np.asarray(values, dtype=float)
            summary[name] = {
                "min": float(arr.min()),
                "avg": float(arr.mean()),
                "max": float(arr.max()),
                "samples": int(arr.size),
            }
        return summary
