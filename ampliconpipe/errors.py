"""Exception classes for pipeline failures, grouped by how far they propagate.

Pre-flight problems (configuration, environment bootstrap, artifact download and
verification) abort the whole run. Stage problems only stop the containing track.
"""


class PipelineError(Exception):
    category = "pipeline error"


class ConfigError(PipelineError, ValueError):
    category = "configuration error"


class BootstrapError(PipelineError):
    category = "environment bootstrap error"


class DownloadError(PipelineError):
    category = "artifact download error"


class IntegrityError(PipelineError):
    category = "artifact integrity error"


class ManifestError(PipelineError, ValueError):
    category = "manifest validation error"


class StageError(PipelineError):
    """Failure of a single stage, tagged with the stage, its log file and how
    long the external tool ran before failing.
    """
    category = "stage error"

    def __init__(self, msg, stage_id=None, log_file=None, elapsed=0.0):
        super(StageError, self).__init__(msg)
        self.stage_id = stage_id
        self.log_file = log_file
        self.elapsed = elapsed


class MissingInputError(StageError):
    category = "missing stage input"


class IncompleteOutputError(StageError):
    category = "incomplete stage output"


class ExternalToolError(StageError):
    category = "external tool failure"

    def __init__(self, msg, stage_id=None, log_file=None, returncode=None, elapsed=0.0):
        super(ExternalToolError, self).__init__(msg, stage_id, log_file, elapsed)
        self.returncode = returncode
