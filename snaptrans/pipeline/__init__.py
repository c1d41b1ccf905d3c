"""Pipeline package: end-to-end orchestration, benchmarking and memory sampling."""

from .benchmark import BenchmarkReport, run_benchmark, summarize
from .metrics import MemoryTracker, process_rss
from .orchestrator import PipelineOrchestrator, build_orchestrator

__all__ = [
    "BenchmarkReport",
    "run_benchmark",
    "summarize",
    "MemoryTracker",
    "process_rss",
    "PipelineOrchestrator",
    "build_orchestrator",
]
