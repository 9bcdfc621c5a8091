"""Exception types raised across the pipeline."""


class JobHunterError(Exception):
    """Base class for pipeline errors."""


class ConfigurationError(JobHunterError):
    """Missing credentials, no active groups, or invalid group thresholds. Fatal to a run."""


class SourceError(JobHunterError):
    """The job provider call failed or timed out for one search group."""


class PersistenceError(JobHunterError):
    """A batch write was rolled back."""


class DigestError(JobHunterError):
    """The digest email could not be sent."""


class PipelineBusyError(JobHunterError):
    """A run was triggered while another one is still in flight."""
