from __future__ import annotations

import json
import re
from importlib.resources import files
from typing import TYPE_CHECKING, Any

from .coercion import FORMATS, TypeDeclaration, TypeRegistry
from .errors import (
    BatchSizeExceeded,
    DynarecordError,
    InvalidDeclarationError,
    InvalidEnumerableValue,
    ModelDefinitionError,
    NotFoundError,
    ReadOnlyKeyError,
    StaleRecordError,
    UnsupportedTypeError,
    ValidationError,
    ValidationFailed,
)
from .model import HandledAttribute, ModelDefinition, attribute
from .record import Record

if TYPE_CHECKING:
    from .batch import BatchQueue
    from .runtime import (
        AwsCallMetric,
        Settings,
        create_boto3_config,
        get_dynamodb_client,
        instrument_client,
        load_settings,
    )
    from .table import Table


def _read_repo_version() -> str:
    try:
        data = json.loads(files(__package__).joinpath("version.json").read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return "0.0.0"

    version = data.get("version")
    return version if isinstance(version, str) and version else "0.0.0"


def _normalize_repo_version(repo_version: str) -> str:
    match = re.match(r"^(\d+\.\d+\.\d+)-rc\.?([0-9]+)$", repo_version)
    if match:
        return f"{match.group(1)}rc{match.group(2)}"
    return repo_version


__repo_version__ = _read_repo_version()
__version__ = _normalize_repo_version(__repo_version__)


def __getattr__(name: str) -> Any:
    if name == "Table":
        from .table import Table

        return Table
    if name == "BatchQueue":
        from .batch import BatchQueue

        return BatchQueue
    if name in {
        "AwsCallMetric",
        "Settings",
        "create_boto3_config",
        "get_dynamodb_client",
        "instrument_client",
        "load_settings",
    }:
        from . import runtime

        return getattr(runtime, name)
    raise AttributeError(name)


__all__ = [
    "FORMATS",
    "AwsCallMetric",
    "BatchQueue",
    "BatchSizeExceeded",
    "DynarecordError",
    "HandledAttribute",
    "InvalidDeclarationError",
    "InvalidEnumerableValue",
    "ModelDefinition",
    "ModelDefinitionError",
    "NotFoundError",
    "ReadOnlyKeyError",
    "Record",
    "Settings",
    "StaleRecordError",
    "Table",
    "TypeDeclaration",
    "TypeRegistry",
    "UnsupportedTypeError",
    "ValidationError",
    "ValidationFailed",
    "__version__",
    "attribute",
    "create_boto3_config",
    "get_dynamodb_client",
    "instrument_client",
    "load_settings",
]
