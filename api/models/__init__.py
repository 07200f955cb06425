# Models module
from .import_run import ImportRunModel, FailureReasonModel, RunStatusEnum

__all__ = ["ImportRunModel", "FailureReasonModel", "RunStatusEnum"]
