"""High-level helpers for running weldpath from Python."""

from .run import OUTPUT_FILES, PipelineRunSummary, build_report, export_results, run_pipeline

__all__ = ["OUTPUT_FILES", "PipelineRunSummary", "build_report", "export_results", "run_pipeline"]
