"""Exception types raised at the Wisepanel transport seam and during run start."""


class WisepanelError(Exception):
    """Base class for all Wisepanel bridge errors."""


class ConfigError(WisepanelError):
    """Raised when required configuration (e.g. the API key) is missing."""


class WisepanelAPIError(WisepanelError):
    """Raised when the Wisepanel API answers with an HTTP error."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class PublishError(WisepanelAPIError):
    """Raised when publishing to the Commons fails.

    Carries the machine-readable ``code`` and the decoded JSON error body
    (``details``) when the server sent one.
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        code: str | None = None,
        details: dict | None = None,
    ) -> None:
        self.code = code
        self.details = details
        super().__init__(message, status_code)


class StartError(WisepanelError):
    """Raised when a deliberation cannot be started or never confirms a run id."""
