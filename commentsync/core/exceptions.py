"""
CommentSync error types.

Fatal errors abort a job and their message is recorded verbatim on it.
Per-comment transfer failures (TransferAPIError) are caught by the batcher
and never reach the job level.
"""


class CommentSyncError(Exception):
    error_code = "commentsync_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class MetadataError(CommentSyncError):
    """ffprobe failed or its output had no usable video stream."""
    error_code = "metadata_error"


class ExtractionError(CommentSyncError):
    """The decoder could not be spawned or exited nonzero."""
    error_code = "extraction_error"


class HashError(CommentSyncError):
    """An image could not be decoded or resized."""
    error_code = "hash_error"


class NoProxyError(CommentSyncError):
    error_code = "no_proxy"


class NoCommentsError(CommentSyncError):
    error_code = "no_comments"


class AuthError(CommentSyncError):
    """Missing credentials, or the token refresh was rejected."""
    error_code = "auth_error"


class PlatformAPIError(CommentSyncError):
    error_code = "platform_api_error"

    def __init__(self, message: str, status: int = None):
        super().__init__(message)
        self.status = status


class TransferAPIError(PlatformAPIError):
    """A single comment creation was rejected."""
    error_code = "transfer_api_error"


class JobNotFoundError(CommentSyncError):
    error_code = "job_not_found"


class VersionStackError(CommentSyncError):
    """Source and target are not versions in one Frame.io version stack."""
    error_code = "version_stack_mismatch"
