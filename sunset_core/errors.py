class SunsetError(Exception):
    """Base error for Sunset."""


class RecoverableError(SunsetError):
    """Indicates the operation can be retried by re-running the batch."""


class PermanentError(SunsetError):
    """Indicates the operation should not be retried."""


class ValidationError(SunsetError):
    """Input validation failure."""


class ServiceError(RecoverableError):
    """An external system call failed (timeout, connectivity, 5xx)."""


class NotFoundError(PermanentError):
    """The external system has no record of the target."""


class MalformedArtifactError(ValidationError):
    """Decision artifact is missing a required column or holds an invalid value."""


class ConfigurationError(ValidationError):
    """Conflicting or invalid run configuration."""


class EligibilityLookupError(SunsetError):
    """A cohort/group lookup failed for a single device."""


class ConfirmationDeclined(SunsetError):
    """The batch confirmation gate was not passed."""
