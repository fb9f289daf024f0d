"""Offloading runtime: edge session, coordinators and the local boundary components."""

from .edge_session import EdgeSession
from .installer import Installer
from .offloading import OffloadingService, validate_writable_dir
from .pipeline import (
    LocalPipeline,
    LocalPipelineEngine,
    Pipeline,
    PipelineElement,
    PipelineEngine,
    PipelineState,
    parse_description,
)
from .stores import LocalModelStore, LocalPipelineStore, ModelInfo, ModelStore, PipelineStore
from .training import CompletionDetector, TrainingOffloading
from .uri_resolver import UriResolver

__all__ = [
    'EdgeSession',
    'Installer',
    'OffloadingService',
    'validate_writable_dir',
    'LocalPipeline',
    'LocalPipelineEngine',
    'Pipeline',
    'PipelineElement',
    'PipelineEngine',
    'PipelineState',
    'parse_description',
    'LocalModelStore',
    'LocalPipelineStore',
    'ModelInfo',
    'ModelStore',
    'PipelineStore',
    'CompletionDetector',
    'TrainingOffloading',
    'UriResolver',
]
