"""
Exception hierarchy for relay operations.

Every directive-level failure is one of these; the command handler turns
them into a response for the user. ``is_warning`` marks no-op outcomes
(already subscribed, not subscribed, ...) that are reported with a warning
rather than an error.
"""


class RelayError(Exception):
    is_warning = False

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class NotConnected(RelayError):
    def __init__(self, reason: str = "not connected to an MQTT broker"):
        super().__init__(reason)


class AlreadyConnected(RelayError):
    is_warning = True

    def __init__(self, reason: str = "already connected to an MQTT broker"):
        super().__init__(reason)


class InvalidArgument(RelayError):
    pass


class AlreadySubscribed(RelayError):
    is_warning = True

    def __init__(self, topic: str):
        self.topic = topic
        super().__init__(f"already subscribed to topic: {topic}")


class NotSubscribed(RelayError):
    is_warning = True

    def __init__(self, topic: str):
        self.topic = topic
        super().__init__(f"not subscribed to topic: {topic}")


class TransportError(RelayError):
    """Broker rejected the request or the connection dropped while waiting."""


class InternalError(RelayError):
    """Unexpected exception raised while handling a directive."""
