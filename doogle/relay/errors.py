class RelayPipelineError(Exception):
    """Base class for failures inside the relay pipeline."""

    kind = "RelayPipelineError"


class TranslationError(RelayPipelineError):
    """The inbound request could not be turned into an upstream target."""

    kind = "TranslationError"


class UpstreamError(RelayPipelineError):
    """The upstream could not be reached or dropped the exchange."""

    kind = "UpstreamError"

    def __init__(self, message: str, cause: Exception = None):
        super().__init__(message)
        self.cause = cause


class TransformError(RelayPipelineError):
    """The upstream body could not be decoded or rewritten."""

    kind = "TransformError"


class RelayError(RelayPipelineError):
    """Writing the response to the client failed."""

    kind = "RelayError"
