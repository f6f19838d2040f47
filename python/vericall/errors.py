"""
Error taxonomy for VeriCall.

Live-call errors are caught at the turn boundary by the call session;
witness errors are caught by the pipeline and recorded on the witness record.
Nothing here is meant to unwind past a call or a pipeline.
"""


class VeriCallError(Exception):
    """Base class for all VeriCall errors."""


class TransportClosed(VeriCallError):
    """A send was attempted on a media stream that is no longer open."""


class UpstreamServiceFailure(VeriCallError):
    """An external service (STT, oracle, TTS, prover, registry) failed."""

    def __init__(self, service: str, message: str):
        super().__init__(f"{service}: {message}")
        self.service = service


class ConfigurationMissing(VeriCallError):
    """A required credential or endpoint is not configured."""


class UnmappedDecision(VeriCallError):
    """The decision has no registry encoding; not chain-eligible."""


class InvalidTransition(VeriCallError):
    """A witness status change would break the status progression."""
