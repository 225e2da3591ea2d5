"""
Error taxonomy for the live emotion pipeline.

Region-scoped errors (RegionError subclasses) degrade a single detection to
"detected, unlabeled". Pipeline-scoped errors abort start() and leave the
pipeline idle. StreamEnded is a termination signal, not an error.
"""


class EmotionPipelineError(Exception):
    """Base class for pipeline errors."""


class StreamEnded(Exception):
    """No frame is available from the source (disconnect, end of file)."""


# ---- pipeline-scoped ----
class DeviceUnavailable(EmotionPipelineError):
    pass


class ModelLoadError(EmotionPipelineError):
    pass


class NoSourceSelected(EmotionPipelineError):
    pass


# ---- region-scoped ----
class RegionError(EmotionPipelineError):
    """Failure confined to one detected region."""


class InvalidRegion(RegionError):
    pass


class InferenceError(RegionError):
    pass


class EmptyScoreVector(RegionError):
    pass


class LabelMismatch(RegionError):
    pass
