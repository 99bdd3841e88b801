# errors.py
"""Error taxonomy shared by the probe source and the monitor."""


class LossRecorderError(Exception):
    """Base class for all loss recorder errors."""


class ProbeSourceConstructionError(LossRecorderError):
    """The probe source could not be created (bad host, missing ping binary). Fatal."""


class ProbeRunError(LossRecorderError):
    """Probing stopped unexpectedly. Fatal only for the console variant."""


class PacketSendError(LossRecorderError):
    """A single echo request could not be sent. Reported, never fatal."""
