class VidscribeError(Exception):
    pass


class InvalidReferenceError(VidscribeError):
    """The video reference can't be resolved to a supported identifier."""


class AcquisitionError(VidscribeError):
    """Audio couldn't be downloaded or extracted."""


class UploadError(VidscribeError):
    pass


class TranscriptionError(VidscribeError):
    pass


class SegmentationError(TranscriptionError):
    """At least one segment of a parallel batch failed; nothing was merged."""


class EnrichmentError(VidscribeError):
    pass


class CacheIOError(VidscribeError):
    pass
