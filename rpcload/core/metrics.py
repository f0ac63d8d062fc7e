"""Metrics collection and reporting for load runs"""

import json
import logging
import math
import time
from collections import deque
from dataclasses import dataclass, field
from statistics import mean, median
from typing import Any, Deque, Dict, Iterable, List, Optional

import psutil

log = logging.getLogger(__name__)

# newest round trips kept per worker for percentiles
MAX_LATENCY_SAMPLES = 10000


def percentile(data: Iterable[float], rank: float) -> float:
    """Nearest-rank percentile of data"""
    sorted_data = sorted(data)
    index = int(len(sorted_data) * rank / 100)
    return sorted_data[min(index, len(sorted_data) - 1)]


class LatencyStats:
    """
    Running round-trip statistics with a bounded sample window.

    Count, mean, min, max and variance are updated incrementally over every
    value (Welford), so memory stays flat however long a run lasts. Median
    and percentiles come from the most recent max_samples values.
    """

    def __init__(self, max_samples: int = MAX_LATENCY_SAMPLES):
        self.count = 0
        self.mean = 0.0
        self.min: Optional[float] = None
        self.max: Optional[float] = None
        self._m2 = 0.0
        self.samples: Deque[float] = deque(maxlen=max_samples)

    def add(self, value: float):
        self.count += 1
        delta = value - self.mean
        self.mean += delta / self.count
        self._m2 += delta * (value - self.mean)
        self.min = value if self.min is None else min(self.min, value)
        self.max = value if self.max is None else max(self.max, value)
        self.samples.append(value)

    def extend(self, values: Iterable[float]):
        for value in values:
            self.add(value)

    def merge(self, other: 'LatencyStats'):
        """Fold another worker's statistics into these"""
        if other.count == 0:
            return
        if self.count == 0:
            self.count, self.mean, self._m2 = other.count, other.mean, other._m2
            self.min, self.max = other.min, other.max
        else:
            total = self.count + other.count
            delta = other.mean - self.mean
            self.mean += delta * other.count / total
            self._m2 += other._m2 + delta * delta * self.count * other.count / total
            self.count = total
            self.min = min(self.min, other.min)
            self.max = max(self.max, other.max)
        self.samples.extend(other.samples)

    @property
    def stdev(self) -> float:
        if self.count < 2:
            return 0.0
        return math.sqrt(self._m2 / (self.count - 1))

    def __len__(self):
        return self.count

    def summary(self) -> Dict[str, Any]:
        return {
            'mean': self.mean,
            'median': median(self.samples),
            'min': self.min,
            'max': self.max,
            'stdev': self.stdev,
            'p95': percentile(self.samples, 95),
            'p99': percentile(self.samples, 99),
            'count': self.count,
            'samples': len(self.samples),
        }


@dataclass
class LoadMetrics:
    """Container for the results of one load run"""

    name: str
    transport: str  # 'rpyc' or 'loopback'
    app_threads: int = 0
    msg_size: int = 0
    num_requests: int = 0  # per worker, 0 means unbounded

    # Round-trip times of all requests
    latency: LatencyStats = field(default_factory=LatencyStats)

    total_requests: int = 0
    failed_requests: int = 0

    # System resource metrics
    cpu_usage: List[float] = field(default_factory=list)
    memory_usage: List[float] = field(default_factory=list)

    # Timing
    start_time: Optional[float] = None
    end_time: Optional[float] = None

    per_worker: List[Dict[str, Any]] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        # room for a full window from every worker
        if self.app_threads > 1 and not self.latency.count:
            self.latency = LatencyStats(MAX_LATENCY_SAMPLES * self.app_threads)

    def add_worker(self, stats: Dict[str, Any]):
        """Fold one worker's summary into the run totals"""
        self.per_worker.append(stats)
        self.latency.merge(stats['latency'])
        self.total_requests += stats['total_requests']
        self.failed_requests += stats['failed_requests']

    def record_system_metrics(self):
        """Record current system resource usage"""
        self.cpu_usage.append(psutil.cpu_percent(interval=0.1))
        self.memory_usage.append(psutil.virtual_memory().percent)

    def start(self):
        self.start_time = time.time()

    def end(self):
        self.end_time = time.time()

    def get_duration(self) -> Optional[float]:
        """Elapsed wall-clock seconds between start() and end()"""
        if self.start_time is not None and self.end_time is not None:
            return self.end_time - self.start_time
        return None

    @property
    def requests_per_second(self) -> float:
        duration = self.get_duration()
        if not duration:
            return 0.0
        return self.total_requests / duration

    def compute_statistics(self) -> Dict[str, Any]:
        """Compute statistical summaries of collected metrics"""
        stats = {
            'name': self.name,
            'transport': self.transport,
            'app_threads': self.app_threads,
            'msg_size': self.msg_size,
            'requests_per_thread': self.num_requests,
            'duration': self.get_duration(),
            'total_requests': self.total_requests,
            'failed_requests': self.failed_requests,
            'requests_per_second': self.requests_per_second,
            'success_rate': (self.total_requests - self.failed_requests) / self.total_requests
                            if self.total_requests > 0 else 0,
        }

        if self.latency.count:
            stats['latency'] = self.latency.summary()

        if self.cpu_usage:
            stats['cpu_usage'] = {
                'mean': mean(self.cpu_usage),
                'max': max(self.cpu_usage),
            }

        if self.memory_usage:
            stats['memory_usage'] = {
                'mean': mean(self.memory_usage),
                'max': max(self.memory_usage),
            }

        stats['workers'] = [
            {k: v for k, v in worker.items() if k != 'latency'}
            for worker in self.per_worker
        ]
        stats['metadata'] = self.metadata

        return stats

    def log_report(self):
        """Emit the throughput lines to the log"""
        duration = self.get_duration() or 0.0
        log.info("it takes %.3f mseconds to send %d requests to server",
                 duration * 1000, self.total_requests)
        log.info("Performance: %.3f requests per second, msgSize:%d bytes",
                 self.requests_per_second, self.msg_size)

    def to_json(self) -> str:
        return json.dumps(self.compute_statistics(), indent=2)

    def to_dict(self) -> Dict[str, Any]:
        return self.compute_statistics()

    def print_summary(self):
        """Print a human-readable summary"""
        stats = self.compute_statistics()

        print("\n" + "="*80)
        print("LOAD RUN SUMMARY")
        print("="*80 + "\n")

        print(f"{stats['name']} ({stats['transport']})")
        print("-" * 40)
        print(f"  App Threads: {stats['app_threads']}")
        print(f"  Message Size: {stats['msg_size']} bytes")

        if stats['duration'] is not None:
            print(f"  Total Duration: {stats['duration']*1000:.3f}ms")

        print(f"  Total Requests: {stats['total_requests']}")
        print(f"  Throughput: {stats['requests_per_second']:.3f} requests/s")
        print(f"  Success Rate: {stats['success_rate']*100:.2f}%")

        if 'latency' in stats:
            lat = stats['latency']
            print(f"  Latency Mean: {lat['mean']*1000:.3f}ms (±{lat['stdev']*1000:.3f}ms)")
            print(f"  Latency Median: {lat['median']*1000:.3f}ms")
            print(f"  Latency P95: {lat['p95']*1000:.3f}ms")
            print(f"  Latency P99: {lat['p99']*1000:.3f}ms")

        if 'cpu_usage' in stats:
            cpu = stats['cpu_usage']
            print(f"  CPU Usage: {cpu['mean']:.1f}% (max: {cpu['max']:.1f}%)")

        if 'memory_usage' in stats:
            mem = stats['memory_usage']
            print(f"  Memory Usage: {mem['mean']:.1f}% (max: {mem['max']:.1f}%)")

        print("\n" + "="*80 + "\n")
