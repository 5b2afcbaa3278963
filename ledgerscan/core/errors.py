"""
Exception hierarchy for the extraction pipeline.

Only ConfigurationError is meant to reach callers: it is raised while wiring
components together (missing credentials for a selected provider). Everything
else is caught at a stage boundary and turned into a degraded result plus a
warning.
"""


class LedgerscanError(Exception):
    """Base class for all pipeline errors"""


class ConfigurationError(LedgerscanError):
    """A selected provider cannot be constructed from the current settings"""


class RecognitionError(LedgerscanError):
    """Text could not be acquired from the document"""


class GenerationError(LedgerscanError):
    """The generation backend did not produce a usable completion"""


class GenerationResponseError(GenerationError):
    """The completion did not contain a parsable JSON object"""

    def __init__(self, message: str, raw_response: str = ""):
        super().__init__(message)
        self.raw_response = raw_response


class RateProviderError(LedgerscanError):
    """The FX provider answered with an unusable payload"""
