"""
errors.py
---------
Exceptions shared by the classifier, the session and the web demo.

Every error carries an optional legacy ``code`` understood by the browser
front-end (-1 = label does not exist, -2 = no more available classes).
"""

from __future__ import annotations

ERROR_LABEL_DOES_NOT_EXIST     = -1
ERROR_NO_MORE_AVAILABLE_CLASSES = -2


class TeachableError(Exception):
    """Base class for all errors reported to the UI layer."""

    code: int | None = None

    def __init__(self, message: str, label: str | None = None):
        super().__init__(message)
        self.label = label


class InvalidClass(TeachableError, IndexError):
    """Class slot index outside ``[0, num_classes)``."""

    def __init__(self, class_index: int, num_classes: int):
        super().__init__(
            f"Invalid class {class_index} (expected 0 <= class < {num_classes})"
        )
        self.class_index = class_index
        self.num_classes = num_classes


class NotReady(TeachableError, RuntimeError):
    """Model not loaded yet, or nothing to compare a query against."""


class LabelNotFound(TeachableError, KeyError):
    code = ERROR_LABEL_DOES_NOT_EXIST

    def __init__(self, label: str):
        super().__init__(f"Label {label!r} does not exist", label=label)

    # KeyError.__str__ would repr() the message
    def __str__(self) -> str:
        return str(self.args[0])


class NoAvailableSlots(TeachableError):
    code = ERROR_NO_MORE_AVAILABLE_CLASSES

    def __init__(self, label: str, num_classes: int):
        super().__init__(
            f"Cannot add label {label!r}: all {num_classes} classes are in use",
            label=label,
        )
