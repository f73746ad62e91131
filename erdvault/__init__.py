from .constants import APP_NAME, SCHEMA_VERSION, VERSION
from .db import ERDVaultStore
from .errors import ConstraintViolation, DecryptionFailed, ERDVaultError, InvalidBundle, IOFailure, NotFound
from .model import Field, Model, Relation, Table
from .session import DiagramSession
from .sql import generate_sql

__version__ = VERSION

__all__ = [
    "APP_NAME",
    "SCHEMA_VERSION",
    "ConstraintViolation",
    "DecryptionFailed",
    "DiagramSession",
    "ERDVaultError",
    "ERDVaultStore",
    "Field",
    "IOFailure",
    "InvalidBundle",
    "Model",
    "NotFound",
    "Relation",
    "Table",
    "generate_sql",
]
