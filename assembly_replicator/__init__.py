"""
assembly_replicator

Copies payload members placed in one instance of a repeated assembly into every
other instance of the same assembly definition, inferring each instance's
translation, rotation and mirroring from matched reference members.
"""

from .cad_common import (
    BoundingBox, ReplicatorError, ModelConfigurationError, UnderdeterminedTransform,
    NoReferenceElements, HostOperationFailure, TransactionFailure, XmlParsingError,
    XmlWritingError
)
from .config import CopyStrategy, ReplicationConfig
from .model_document import ModelDocument
from .model_reader import read_model_file
from .model_writer import save_model_file
from .replicator import Replicator, ReplicationResult, ResultCode

__version__ = "0.1.0"

__all__ = [
    "BoundingBox", "ReplicatorError", "ModelConfigurationError", "UnderdeterminedTransform",
    "NoReferenceElements", "HostOperationFailure", "TransactionFailure", "XmlParsingError",
    "XmlWritingError", "CopyStrategy", "ReplicationConfig", "ModelDocument", "read_model_file",
    "save_model_file", "Replicator", "ReplicationResult", "ResultCode", "__version__",
]
