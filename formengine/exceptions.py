"""
Exception hierarchy for the form engine.

Validation failures are never raised; they are returned in a
ValidationResult. The exceptions below cover schema loading and
transactions the engine refuses to apply.
"""


class FormEngineError(Exception):
    """Base class for all engine errors."""


class SchemaError(FormEngineError, ValueError):
    """The schema document is missing, malformed or inconsistent."""


class FormNotLoadedError(FormEngineError):
    """An operation was attempted before a schema was loaded."""


class UnknownFieldError(FormEngineError, KeyError):
    """A field key does not belong to the loaded schema."""

    def __init__(self, field_key: str):
        super().__init__(field_key)
        self.field_key = field_key

    def __str__(self):
        return f'Unknown field key: {self.field_key}'


class ReadOnlyFieldError(FormEngineError):
    """A write was attempted against a read-only field."""

    def __init__(self, field_key: str):
        super().__init__(f'Field is read-only: {field_key}')
        self.field_key = field_key
