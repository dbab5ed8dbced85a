"""Bulk import of flat-file history into the instrument store."""

from pairview.importing.pipeline import CompletionCallback, ImportPipeline, ProgressCallback

__all__ = ["CompletionCallback", "ImportPipeline", "ProgressCallback"]
