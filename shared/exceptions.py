"""Error taxonomy for the import pipeline."""


class ImportPipelineError(Exception):
    """Base class for all pipeline errors."""


class FetchError(ImportPipelineError):
    """A feed could not be retrieved (timeout, non-2xx status, transport error)."""

    def __init__(self, url: str, message: str):
        self.url = url
        self.message = message
        super().__init__(f"Failed to fetch jobs from {url}: {message}")


class ParseError(ImportPipelineError):
    """A feed payload is malformed or in an unsupported dialect."""


class ValidationError(ImportPipelineError):
    """A job record is missing a required field."""

    def __init__(self, job_key: str, message: str):
        self.job_key = job_key
        super().__init__(message)


class PersistenceError(ImportPipelineError):
    """The document store is unreachable or rejected a write."""


class QueueError(ImportPipelineError):
    """The work queue is unreachable or rejected an operation."""


class PipelineBusyError(ImportPipelineError):
    """Another import pipeline invocation currently holds the lease."""
