"""
Factory for creating export storage backends.
"""
from export_storage.base import ExportStorage
from export_storage.conf import ExportStorageConf, Provider, validate_conf
from export_storage.errors import UnsupportedProviderError
from export_storage.uri import parse_uri


def make_export_storage(conf: ExportStorageConf) -> ExportStorage:
    """
    Create an export storage backend from configuration.

    No network I/O happens here; clients are created on first use.

    Args:
        conf: Destination configuration

    Returns:
        Backend bound to ``conf``

    Raises:
        UnsupportedProviderError: If no backend implements the provider
        InvalidConfigError: If required fields are missing
    """
    provider = conf.provider

    if provider not in tuple(Provider):
        raise UnsupportedProviderError(f"Unknown export storage provider: {provider}")

    validate_conf(conf)

    if provider == Provider.LOCAL:
        from export_storage.local import LocalExportStorage
        return LocalExportStorage(conf)

    elif provider == Provider.HTTP:
        from export_storage.http import HttpExportStorage
        return HttpExportStorage(conf)

    elif provider == Provider.S3:
        from export_storage.s3 import S3ExportStorage
        return S3ExportStorage(conf)

    elif provider == Provider.GOOGLE_CLOUD:
        from export_storage.gcs import GCSExportStorage
        return GCSExportStorage(conf)

    elif provider == Provider.AZURE:
        from export_storage.azure import AzureExportStorage
        return AzureExportStorage(conf)

    else:
        raise UnsupportedProviderError(f"Unknown export storage provider: {provider}")


def export_storage_from_uri(uri: str) -> ExportStorage:
    """Create an export storage backend from a destination URI."""
    return make_export_storage(parse_uri(uri))
