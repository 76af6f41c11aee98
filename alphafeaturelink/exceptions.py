"""Error taxonomy for feature reconciliation.

- IdentityMappingError: external identifiers cannot be trusted, aborts the run
- MalformedFeatureError: one detector feature is unusable, skipped locally
- MissingMS1Error: no MS1 spectra for a file, aborts that file's spectral trees
- ToolExecutionError: an external tool exited abnormally, aborts the run
- DuplicateAssignmentError: a write-once table received a second write
"""


class FeatureLinkError(Exception):
    """Base class for all reconciliation errors."""


class IdentityMappingError(FeatureLinkError):
    """Positional map indices could not be bound to sample files."""


class MalformedFeatureError(FeatureLinkError):
    """A detector feature lacks a required hull or intensity attribute."""

    def __init__(self, feature_id: str, message: str):
        super().__init__(f"Feature {feature_id}: {message}")
        self.feature_id = feature_id


class MissingMS1Error(FeatureLinkError):
    """No MS1 spectra are available for a file."""

    def __init__(self, file_id: int):
        super().__init__(
            f"MS1 spectra not available for file {file_id} "
            "(check the spectrum selection)"
        )
        self.file_id = file_id


class ToolExecutionError(FeatureLinkError):
    """An external tool could not be run or exited with a non-zero code."""

    def __init__(self, tool: str, exit_code: int, message: str = ""):
        text = f"The exit code of {tool} was {exit_code}. (The expected exit code is 0)"
        if message:
            text = f"{text} {message}"
        super().__init__(text)
        self.tool = tool
        self.exit_code = exit_code


class DuplicateAssignmentError(FeatureLinkError, KeyError):
    """A key of a write-once table was assigned twice."""

    def __init__(self, table: str, key):
        super().__init__(f"{table}: key {key!r} is already assigned")
        self.table = table
        self.key = key

    def __str__(self):
        return self.args[0]
