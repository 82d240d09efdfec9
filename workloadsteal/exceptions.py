class StealAgentException(Exception):
    """Base class for errors raised by the workload steal agent."""


class DecodeError(StealAgentException):
    """The admitted object could not be decoded into a workload."""


class PatchSynthesisError(StealAgentException):
    """A JSON patch between two objects could not be computed."""


class PublishError(StealAgentException):
    """Publishing a notification failed at a specific stage."""

    def __init__(self, stage: str, message: str):
        self.stage = stage
        super().__init__(f"{stage} failed: {message}")


class ListenerError(StealAgentException):
    """An HTTPS listener could not start or stopped abnormally."""

    def __init__(self, port: int, message: str):
        self.port = port
        super().__init__(f"listener on port {port}: {message}")
