"""
Encode and decode export destinations as single URI strings.

Examples:
    local:///mnt/backups
    https://backups.internal/exports/
    s3://bucket/prefix?AWS_ACCESS_KEY_ID=...&AWS_SECRET_ACCESS_KEY=...
    gs://bucket/prefix
    azure://container/prefix?AZURE_ACCOUNT_NAME=...&AZURE_ACCOUNT_KEY=...
"""
from typing import Dict, List
from urllib.parse import parse_qs, quote, unquote, urlencode, urlsplit

from export_storage.conf import (
    AzureConf,
    ExportStorageConf,
    GCSConf,
    HttpConf,
    LocalFileConf,
    Provider,
    S3Conf,
)
from export_storage.errors import MalformedURIError

S3_ACCESS_KEY_PARAM = "AWS_ACCESS_KEY_ID"
S3_SECRET_PARAM = "AWS_SECRET_ACCESS_KEY"
S3_ENDPOINT_PARAM = "AWS_ENDPOINT"
S3_REGION_PARAM = "AWS_REGION"

GCS_PROJECT_PARAM = "GOOGLE_CLOUD_PROJECT"
GCS_CREDENTIALS_PARAM = "GOOGLE_APPLICATION_CREDENTIALS"

AZURE_ACCOUNT_NAME_PARAM = "AZURE_ACCOUNT_NAME"
AZURE_ACCOUNT_KEY_PARAM = "AZURE_ACCOUNT_KEY"

LOCAL_SCHEMES = ("local", "nodelocal", "file")
HTTP_SCHEMES = ("http", "https")

_S3_PARAMS = {
    S3_ACCESS_KEY_PARAM: "access_key",
    S3_SECRET_PARAM: "secret",
    S3_ENDPOINT_PARAM: "endpoint",
    S3_REGION_PARAM: "region",
}
_GCS_PARAMS = {
    GCS_PROJECT_PARAM: "project",
    GCS_CREDENTIALS_PARAM: "credentials_file",
}
_AZURE_PARAMS = {
    AZURE_ACCOUNT_NAME_PARAM: "account_name",
    AZURE_ACCOUNT_KEY_PARAM: "account_key",
}


def parse_uri(uri: str) -> ExportStorageConf:
    """
    Decode a destination URI into a configuration.

    Args:
        uri: Destination URI; the scheme names the provider

    Returns:
        Configuration for the destination

    Raises:
        MalformedURIError: If the scheme is unknown or a required field is absent
    """
    if not uri or "://" not in uri:
        raise MalformedURIError(f"Not a destination URI: {uri!r}")

    parsed = urlsplit(uri)
    scheme = parsed.scheme.lower()

    if scheme in LOCAL_SCHEMES:
        path = unquote(parsed.netloc + parsed.path)
        if not path:
            raise MalformedURIError(f"Local URI has no path: {uri!r}", provider="local")
        return ExportStorageConf(provider=Provider.LOCAL, local=LocalFileConf(path=path))

    if scheme in HTTP_SCHEMES:
        if not parsed.netloc:
            raise MalformedURIError(f"HTTP URI has no host: {uri!r}", provider="http")
        return ExportStorageConf(provider=Provider.HTTP, http=HttpConf(base_uri=uri))

    if scheme == "s3":
        fields = _object_store_fields(parsed, uri, "s3", _S3_PARAMS)
        return ExportStorageConf(
            provider=Provider.S3,
            s3=S3Conf(bucket=parsed.netloc, prefix=_prefix(parsed.path), **fields),
        )

    if scheme == "gs":
        fields = _object_store_fields(parsed, uri, "google_cloud", _GCS_PARAMS)
        return ExportStorageConf(
            provider=Provider.GOOGLE_CLOUD,
            gcs=GCSConf(bucket=parsed.netloc, prefix=_prefix(parsed.path), **fields),
        )

    if scheme == "azure":
        fields = _object_store_fields(parsed, uri, "azure", _AZURE_PARAMS)
        for param, field in _AZURE_PARAMS.items():
            if not fields.get(field):
                raise MalformedURIError(
                    f"Azure URI requires {param}", provider="azure"
                )
        return ExportStorageConf(
            provider=Provider.AZURE,
            azure=AzureConf(container=parsed.netloc, prefix=_prefix(parsed.path), **fields),
        )

    raise MalformedURIError(f"Unsupported storage scheme: {parsed.scheme!r}")


def encode_uri(conf: ExportStorageConf) -> str:
    """
    Encode a configuration as a destination URI.

    ``parse_uri(encode_uri(conf)) == conf`` holds for every valid
    configuration whose prefix has no leading or trailing slash. Paths and
    prefixes are percent-encoded, so ``#``, ``?`` and ``%`` survive.
    """
    payload = conf.payload()

    if isinstance(payload, LocalFileConf):
        return "local://" + quote(payload.path, safe="/")

    if isinstance(payload, HttpConf):
        return payload.base_uri

    if isinstance(payload, S3Conf):
        return _object_store_uri("s3", payload.bucket, payload.prefix, payload, _S3_PARAMS)

    if isinstance(payload, GCSConf):
        return _object_store_uri("gs", payload.bucket, payload.prefix, payload, _GCS_PARAMS)

    return _object_store_uri(
        "azure", payload.container, payload.prefix, payload, _AZURE_PARAMS
    )


def _prefix(path: str) -> str:
    return unquote(path).strip("/")


def _object_store_fields(parsed, uri: str, provider: str, params: Dict[str, str]) -> Dict[str, str]:
    """Validate the bucket and map known query parameters to payload fields."""
    if not parsed.netloc:
        raise MalformedURIError(f"URI has no bucket or container: {uri!r}", provider=provider)

    query: Dict[str, List[str]] = parse_qs(parsed.query, keep_blank_values=True)
    unknown = sorted(set(query) - set(params))
    if unknown:
        raise MalformedURIError(
            f"Unknown parameters for {parsed.scheme} URI: {', '.join(unknown)}",
            provider=provider,
        )

    fields = {}
    for param, field in params.items():
        values = query.get(param)
        if values:
            fields[field] = values[-1]
    return fields


def _object_store_uri(scheme: str, bucket: str, prefix: str, payload, params: Dict[str, str]) -> str:
    uri = f"{scheme}://{bucket}"
    if prefix:
        uri += "/" + quote(prefix, safe="/")

    query = {
        param: getattr(payload, field)
        for param, field in params.items()
        if getattr(payload, field)
    }
    if query:
        uri += "?" + urlencode(query)
    return uri
