from .dsl import build_stage, default_pipeline, runtime_stage, sh, stage
from .model import BuildEnvironment, DispatchConfig, PipelineConfig, PushEvent, RuntimeImage, Stage, Step
from .runner import load_pipeline, run_pipeline

__all__ = [
    "sh",
    "stage",
    "build_stage",
    "runtime_stage",
    "default_pipeline",
    "load_pipeline",
    "run_pipeline",
    "BuildEnvironment",
    "DispatchConfig",
    "PipelineConfig",
    "PushEvent",
    "RuntimeImage",
    "Stage",
    "Step",
]
