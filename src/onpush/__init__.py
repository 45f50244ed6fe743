from .dsl import job, on, pipeline, sh, uses, wf
from .loader import load_pipeline
from .model import Job, Pipeline, Step, Trigger, TriggerEvent
from .runner import run_pipeline

__all__ = [
    "job",
    "on",
    "pipeline",
    "sh",
    "uses",
    "wf",
    "load_pipeline",
    "run_pipeline",
    "Job",
    "Pipeline",
    "Step",
    "Trigger",
    "TriggerEvent",
]
