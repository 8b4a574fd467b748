"""Pipeline orchestration."""

from .jobs import NewsPipeline, run_pipeline

__all__ = ["NewsPipeline", "run_pipeline"]
