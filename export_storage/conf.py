"""
Tagged configuration describing an export destination.

An ``ExportStorageConf`` holds a provider discriminator plus one payload per
provider. Only the payload matching ``provider`` is consulted.
"""
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from export_storage.errors import InvalidConfigError


class Provider(str, Enum):
    """Supported destination kinds."""

    LOCAL = "local"
    HTTP = "http"
    S3 = "s3"
    GOOGLE_CLOUD = "google_cloud"
    AZURE = "azure"


class _Payload(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class LocalFileConf(_Payload):
    """Directory on a local (or network-mounted) filesystem."""

    path: str = ""


class HttpConf(_Payload):
    """Base URI of a server accepting PUT, GET and DELETE."""

    base_uri: str = ""


class S3Conf(_Payload):
    """S3 bucket and optional prefix.

    ``endpoint`` and ``region`` are only needed for S3-compatible stores
    such as MinIO; empty credentials fall back to the default AWS chain.
    """

    bucket: str = ""
    prefix: str = ""
    access_key: str = ""
    secret: str = Field(default="", repr=False)
    endpoint: str = ""
    region: str = ""


class GCSConf(_Payload):
    """Google Cloud Storage bucket and optional prefix."""

    bucket: str = ""
    prefix: str = ""
    project: str = ""
    credentials_file: str = ""


class AzureConf(_Payload):
    """Azure Blob container, optional prefix, and shared-key credentials."""

    container: str = ""
    prefix: str = ""
    account_name: str = ""
    account_key: str = Field(default="", repr=False)


Payload = Union[LocalFileConf, HttpConf, S3Conf, GCSConf, AzureConf]


class ExportStorageConf(BaseModel):
    """Immutable description of where export files are stored."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    provider: Provider
    local: Optional[LocalFileConf] = None
    http: Optional[HttpConf] = None
    s3: Optional[S3Conf] = None
    gcs: Optional[GCSConf] = None
    azure: Optional[AzureConf] = None

    def payload(self) -> Payload:
        """
        Return the payload selected by the provider.

        Raises:
            InvalidConfigError: If the matching payload is not populated
        """
        field = _PAYLOAD_FIELDS.get(self.provider)
        value = getattr(self, field) if field else None
        if value is None:
            raise InvalidConfigError(
                f"Configuration for provider '{_provider_name(self.provider)}' "
                f"has no '{field}' payload",
                provider=_provider_name(self.provider),
            )
        return value


_PAYLOAD_FIELDS = {
    Provider.LOCAL: "local",
    Provider.HTTP: "http",
    Provider.S3: "s3",
    Provider.GOOGLE_CLOUD: "gcs",
    Provider.AZURE: "azure",
}


def _provider_name(provider) -> str:
    return provider.value if isinstance(provider, Provider) else str(provider)


def validate_conf(conf: ExportStorageConf) -> Payload:
    """
    Check that the configuration is complete enough to build a backend.

    Args:
        conf: Configuration to check

    Returns:
        The payload selected by ``conf.provider``

    Raises:
        InvalidConfigError: If required fields are empty or inconsistent
    """
    payload = conf.payload()
    provider = _provider_name(conf.provider)

    def fail(message: str) -> InvalidConfigError:
        return InvalidConfigError(message, provider=provider)

    if isinstance(payload, LocalFileConf):
        if not payload.path:
            raise fail("Local destination requires 'path'")

    elif isinstance(payload, HttpConf):
        if not payload.base_uri:
            raise fail("HTTP destination requires 'base_uri'")
        if not payload.base_uri.lower().startswith(("http://", "https://")):
            raise fail(f"HTTP base URI must be http(s): {payload.base_uri}")

    elif isinstance(payload, S3Conf):
        if not payload.bucket:
            raise fail("S3 destination requires 'bucket'")
        if bool(payload.access_key) != bool(payload.secret):
            raise fail("S3 access key and secret must be given together")

    elif isinstance(payload, GCSConf):
        if not payload.bucket:
            raise fail("GCS destination requires 'bucket'")

    elif isinstance(payload, AzureConf):
        if not payload.container:
            raise fail("Azure destination requires 'container'")
        if not payload.account_name or not payload.account_key:
            raise fail("Azure destination requires 'account_name' and 'account_key'")

    return payload
