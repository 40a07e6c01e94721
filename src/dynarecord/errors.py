from __future__ import annotations

from collections.abc import Sequence


class DynarecordError(Exception):
    pass


class ModelDefinitionError(DynarecordError, ValueError):
    pass


class UnsupportedTypeError(ModelDefinitionError):
    def __init__(self, format: str) -> None:
        super().__init__(f"Unsupported data type: {format}")
        self.format = format


class InvalidDeclarationError(ModelDefinitionError):
    pass


class ReadOnlyKeyError(DynarecordError):
    def __init__(self, name: str) -> None:
        super().__init__(f"cannot write to key attribute after construction: {name}")
        self.name = name


class InvalidEnumerableValue(DynarecordError, ValueError):
    pass


class NotFoundError(DynarecordError):
    pass


class ValidationError(DynarecordError):
    pass


class ValidationFailed(DynarecordError):
    def __init__(self, *, errors: Sequence[str]) -> None:
        super().__init__("validation failed: " + ", ".join(errors) if errors else "validation failed")
        self.errors = tuple(errors)


class BatchSizeExceeded(DynarecordError):
    def __init__(self, *, requested: int, limit: int) -> None:
        super().__init__(f"batch request of {requested} keys exceeds the limit of {limit}")
        self.requested = requested
        self.limit = limit


class StaleRecordError(DynarecordError):
    pass
