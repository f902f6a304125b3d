"""Error taxonomy shared by the poller, the stores and the alert engine."""


class LinkwatchError(Exception):
    """Base class for all linkwatch errors."""


class TransientDeviceError(LinkwatchError):
    """A device could not be reached or answered badly; retried next tick."""

    def __init__(self, device_id: str, reason: str) -> None:
        super().__init__(f"device {device_id}: {reason}")
        self.device_id = device_id
        self.reason = reason


class PersistenceError(LinkwatchError):
    """A storage write failed; the tick is aborted for the device."""


class DuplicateAlertRace(LinkwatchError):
    """The open-alert uniqueness constraint rejected an insert."""

    def __init__(self, device_id: str, interface_name: str | None) -> None:
        super().__init__(
            f"open alert already exists for {device_id}/{interface_name or '<device>'}"
        )
        self.device_id = device_id
        self.interface_name = interface_name


class DeduplicationInvariantViolation(LinkwatchError):
    """The uniqueness constraint fired but no open alert could be read back."""


class ConfigurationError(LinkwatchError):
    """A monitor or threshold configuration is malformed."""
