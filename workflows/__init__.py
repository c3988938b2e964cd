"""Workflow definitions module."""

from workflows.resolution_workflow import (
    DocumentResolutionWorkflow,
    DocumentResolutionInput,
    DocumentResolutionOutput,
)

__all__ = ["DocumentResolutionWorkflow", "DocumentResolutionInput", "DocumentResolutionOutput"]
