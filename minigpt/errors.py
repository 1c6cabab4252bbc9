"""Exception and warning types raised by MiniGPT."""


class MiniGPTError(Exception):
    """Base class for all MiniGPT errors."""


class ConfigurationError(MiniGPTError):
    """Invalid model architecture or preset."""


class DatasetTooSmallError(MiniGPTError):
    """The corpus yields no usable training window for the requested sizes."""

    def __init__(self, text_length: int, seq_len: int, batch_size: int, num_windows: int):
        self.text_length = text_length
        self.seq_len = seq_len
        self.batch_size = batch_size
        self.num_windows = num_windows
        super().__init__(
            f"Text too short for current sequence length and batch size: "
            f"{text_length} tokens give {num_windows} windows of length {seq_len}, "
            f"need at least {batch_size} (batch_size)"
        )


class RuntimeComputationError(MiniGPTError):
    """A forward or backward pass failed."""


class OperationCancelledError(MiniGPTError):
    """A training or generation run was cancelled through its token."""


class SessionBusyError(MiniGPTError):
    """A session operation was started while another one is still running."""


class RestoreMismatchWarning(UserWarning):
    """A saved parameter could not be restored (unknown name or shape mismatch)."""
