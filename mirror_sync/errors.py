"""Exception hierarchy shared by detectors, channels and the receiver."""


class MirrorSyncError(Exception):
    pass


class DetectionError(MirrorSyncError):
    """A scan or watch subscription could not observe the tree."""


class TransferError(MirrorSyncError):
    """An action could not be applied to the peer."""


class ProtocolError(TransferError):
    """The peer sent a frame that does not decode."""
