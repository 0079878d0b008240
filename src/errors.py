"""Error taxonomy for the ingestion, enrichment and alerting stages."""


class PipelineError(Exception):
    """Base error with a category tag for reports and logs."""

    category = "PIPELINE"

    def __init__(self, message: str, source: str = ""):
        super().__init__(message)
        self.message = message
        self.source = source


class TransientFetchError(PipelineError):
    """Network, timeout or HTTP failure on an external fetch.

    Never retried in a loop: the next scheduled cycle is the retry.
    """

    category = "FETCH"


FetchError = TransientFetchError


class ParseError(PipelineError, ValueError):
    """Malformed feed entry or page; adapters skip the entry and carry on."""

    category = "PARSE"


class ConfigurationError(PipelineError):
    """Missing credential or unknown source profile."""

    category = "CONFIG"


class DuplicateConflict(PipelineError):
    """Unique-key violation at write time. Callers treat it as a no-op."""

    category = "DUPLICATE"
