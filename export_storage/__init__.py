"""
Export storage: one interface for writing, reading and deleting export files
on local disk, HTTP servers, S3, Google Cloud Storage and Azure Blob Storage.
"""
from export_storage.base import ExportStorage
from export_storage.conf import (
    AzureConf,
    ExportStorageConf,
    GCSConf,
    HttpConf,
    LocalFileConf,
    Provider,
    S3Conf,
)
from export_storage.destinations import load_destinations
from export_storage.errors import (
    CommitFailedError,
    DeleteFailedError,
    ExportStorageError,
    HandleClosedError,
    InvalidConfigError,
    InvalidKeyError,
    InvalidWriterStateError,
    MalformedURIError,
    ObjectNotFoundError,
    OperationCanceledError,
    ReadFailedError,
    UnsupportedProviderError,
)
from export_storage.factory import export_storage_from_uri, make_export_storage
from export_storage.reader import ExportReader
from export_storage.uri import encode_uri, parse_uri
from export_storage.writer import StagedWriter, WriterState

__all__ = [
    "AzureConf",
    "CommitFailedError",
    "DeleteFailedError",
    "ExportReader",
    "ExportStorage",
    "ExportStorageConf",
    "ExportStorageError",
    "GCSConf",
    "HandleClosedError",
    "HttpConf",
    "InvalidConfigError",
    "InvalidKeyError",
    "InvalidWriterStateError",
    "LocalFileConf",
    "MalformedURIError",
    "ObjectNotFoundError",
    "OperationCanceledError",
    "Provider",
    "ReadFailedError",
    "S3Conf",
    "StagedWriter",
    "UnsupportedProviderError",
    "WriterState",
    "encode_uri",
    "export_storage_from_uri",
    "load_destinations",
    "make_export_storage",
    "parse_uri",
]
