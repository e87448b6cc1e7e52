"""Exception hierarchy for wa-archiver."""


class ArchiverError(Exception):
    """Base exception for all archiver errors."""


# Configuration
class ConfigurationError(ArchiverError):
    """A required setting is missing or invalid."""


class EmailNotConfiguredError(ConfigurationError):
    """No email provider or no report recipient is configured."""


# Email
class EmailDeliveryError(ArchiverError):
    """The email provider rejected or failed to deliver a message."""


# WhatsApp session
class SessionError(ArchiverError):
    """The protocol session is missing or not usable for the operation."""


class MediaDownloadError(ArchiverError):
    """Media bytes could not be retrieved for a message."""
