from __future__ import annotations


class QuietHoursError(RuntimeError):
    pass


class ValidationError(QuietHoursError):
    """Window rejected before anything was written."""


class InvalidFormat(ValidationError):
    def __init__(self, text: object):
        super().__init__(f"Time must be in HH:mm format, got {text!r}.")
        self.text = text


class SameStartEnd(ValidationError):
    def __init__(self) -> None:
        super().__init__("Start and end times cannot be the same.")


class Overlap(ValidationError):
    def __init__(self, window_id: int):
        super().__init__(f"Quiet windows cannot overlap (conflicts with window {window_id}).")
        self.window_id = window_id


class NotFound(QuietHoursError):
    def __init__(self, window_id: int):
        super().__init__(f"Quiet window {window_id} not found.")
        self.window_id = window_id


class DeliveryFailure(QuietHoursError):
    """Transport rejected or failed to deliver a notification."""


class QueueClosed(QuietHoursError):
    pass
