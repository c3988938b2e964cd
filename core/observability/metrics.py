"""
Metrics Collection for Identity Resolution

Collects in-memory metrics for:
- File duplicate checks (duplicates vs. new files)
- Invoice duplicate checks by classification (exact, likely, possible, unique)
- Supplier ingestion outcomes (created, matched, skipped, failed)
- Concurrency conflicts and primary attribute changes
- Processing times per stage (average, p95)
- Activity execution (started, completed, failed)
"""

import statistics
from collections import defaultdict
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Dict, List, Optional


# =============================================================================
# Metric Data Classes
# =============================================================================

@dataclass
class DedupMetrics:
    """Metrics for file and invoice duplicate checks."""
    file_checks: int = 0
    file_duplicates: int = 0
    invoice_checks: int = 0

    # By duplicate type (exact, likely, possible, unique)
    invoice_by_type: Dict[str, int] = field(default_factory=lambda: defaultdict(int))


@dataclass
class SupplierMetrics:
    """Metrics for supplier ingestion."""
    # By action (created, matched, skipped, failed)
    by_action: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    conflicts: int = 0
    primary_changes: int = 0
    attributes_recorded: int = 0


@dataclass
class ActivityMetrics:
    """Metrics for activity execution."""
    started: int = 0
    completed: int = 0
    failed: int = 0

    by_name: Dict[str, Dict[str, int]] = field(default_factory=lambda: defaultdict(lambda: {"started": 0, "completed": 0, "failed": 0}))


@dataclass
class TimingMetrics:
    """Processing time metrics."""
    samples: List[float] = field(default_factory=list)
    max_samples: int = 1000

    by_stage: Dict[str, List[float]] = field(default_factory=lambda: defaultdict(list))

    def add_sample(self, duration_ms: float, stage: str = None):
        """Add a timing sample."""
        self.samples.append(duration_ms)
        if len(self.samples) > self.max_samples:
            self.samples = self.samples[-self.max_samples:]

        if stage:
            self.by_stage[stage].append(duration_ms)
            if len(self.by_stage[stage]) > self.max_samples:
                self.by_stage[stage] = self.by_stage[stage][-self.max_samples:]

    def get_average(self, stage: str = None) -> float:
        samples = self.by_stage.get(stage, []) if stage else self.samples
        return statistics.mean(samples) if samples else 0.0

    def get_p95(self, stage: str = None) -> float:
        samples = self.by_stage.get(stage, []) if stage else self.samples
        if not samples:
            return 0.0
        sorted_samples = sorted(samples)
        idx = int(len(sorted_samples) * 0.95)
        return sorted_samples[min(idx, len(sorted_samples) - 1)]


# =============================================================================
# Metrics Collector (Singleton)
# =============================================================================

class MetricsCollector:
    """
    Thread-safe metrics collector for the resolution engine.

    Usage:
        metrics = MetricsCollector.instance()
        metrics.record_invoice_check("likely")
        metrics.record_supplier_action("created")
    """

    _instance: Optional["MetricsCollector"] = None
    _lock = Lock()

    def __init__(self):
        self.dedup = DedupMetrics()
        self.suppliers = SupplierMetrics()
        self.activities = ActivityMetrics()
        self.timings = TimingMetrics()
        self._lock = Lock()

    @classmethod
    def instance(cls) -> "MetricsCollector":
        """Get singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    def reset(self):
        """Drop all collected metrics."""
        with self._lock:
            self.dedup = DedupMetrics()
            self.suppliers = SupplierMetrics()
            self.activities = ActivityMetrics()
            self.timings = TimingMetrics()

    # =========================================================================
    # Dedup Metrics
    # =========================================================================

    def record_file_check(self, is_duplicate: bool):
        with self._lock:
            self.dedup.file_checks += 1
            if is_duplicate:
                self.dedup.file_duplicates += 1

    def record_invoice_check(self, duplicate_type: str):
        with self._lock:
            self.dedup.invoice_checks += 1
            self.dedup.invoice_by_type[duplicate_type] += 1

    # =========================================================================
    # Supplier Metrics
    # =========================================================================

    def record_supplier_action(self, action: str):
        """Record the outcome of one supplier ingestion."""
        with self._lock:
            self.suppliers.by_action[action] += 1

    def record_conflict(self):
        """Record a unique-constraint race that was recovered by re-matching."""
        with self._lock:
            self.suppliers.conflicts += 1

    def record_attribute(self, primary_changed: bool):
        with self._lock:
            self.suppliers.attributes_recorded += 1
            if primary_changed:
                self.suppliers.primary_changes += 1

    # =========================================================================
    # Activity Metrics
    # =========================================================================

    def record_activity_started(self, activity_name: str):
        with self._lock:
            self.activities.started += 1
            self.activities.by_name[activity_name]["started"] += 1

    def record_activity_completed(self, activity_name: str, duration_ms: float = None):
        with self._lock:
            self.activities.completed += 1
            self.activities.by_name[activity_name]["completed"] += 1

            if duration_ms:
                self.timings.add_sample(duration_ms, f"activity.{activity_name}")

    def record_activity_failed(self, activity_name: str, error: str = None):
        with self._lock:
            self.activities.failed += 1
            self.activities.by_name[activity_name]["failed"] += 1

    # =========================================================================
    # Timing Metrics
    # =========================================================================

    def record_processing_time(self, stage: str, duration_ms: float):
        """Record a processing time sample."""
        with self._lock:
            self.timings.add_sample(duration_ms, stage)

    def get_timing_stats(self, stage: str = None) -> Dict[str, float]:
        """Get timing statistics for a stage."""
        with self._lock:
            return {
                "average_ms": self.timings.get_average(stage),
                "p95_ms": self.timings.get_p95(stage),
                "sample_count": len(self.timings.by_stage.get(stage, []) if stage else self.timings.samples),
            }

    # =========================================================================
    # Summary
    # =========================================================================

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all metrics."""
        with self._lock:
            return {
                "dedup": {
                    "file_checks": self.dedup.file_checks,
                    "file_duplicates": self.dedup.file_duplicates,
                    "invoice_checks": self.dedup.invoice_checks,
                    "invoice_by_type": dict(self.dedup.invoice_by_type),
                },
                "suppliers": {
                    "by_action": dict(self.suppliers.by_action),
                    "conflicts": self.suppliers.conflicts,
                    "primary_changes": self.suppliers.primary_changes,
                    "attributes_recorded": self.suppliers.attributes_recorded,
                },
                "activities": {
                    "started": self.activities.started,
                    "completed": self.activities.completed,
                    "failed": self.activities.failed,
                    "by_name": {k: dict(v) for k, v in self.activities.by_name.items()},
                },
                "timings": {
                    "overall": {
                        "average_ms": self.timings.get_average(),
                        "p95_ms": self.timings.get_p95(),
                    },
                    "by_stage": {
                        stage: {
                            "average_ms": self.timings.get_average(stage),
                            "p95_ms": self.timings.get_p95(stage),
                        }
                        for stage in self.timings.by_stage.keys()
                    },
                },
            }


# =============================================================================
# Module-level convenience functions
# =============================================================================

def get_metrics() -> MetricsCollector:
    """Get the global metrics collector."""
    return MetricsCollector.instance()


def record_file_check(is_duplicate: bool):
    get_metrics().record_file_check(is_duplicate)


def record_invoice_check(duplicate_type: str):
    get_metrics().record_invoice_check(duplicate_type)


def record_supplier_action(action: str):
    get_metrics().record_supplier_action(action)


def record_conflict():
    get_metrics().record_conflict()


def record_attribute(primary_changed: bool):
    get_metrics().record_attribute(primary_changed)


def record_activity_started(activity_name: str):
    get_metrics().record_activity_started(activity_name)


def record_activity_completed(activity_name: str, duration_ms: float = None):
    get_metrics().record_activity_completed(activity_name, duration_ms)


def record_activity_failed(activity_name: str, error: str = None):
    get_metrics().record_activity_failed(activity_name, error)


def record_processing_time(stage: str, duration_ms: float):
    """Record a processing time sample."""
    get_metrics().record_processing_time(stage, duration_ms)
