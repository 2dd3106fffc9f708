import boto3
from botocore.config import Config as BotoConfig
from django.conf import settings


def _client(endpoint_url: str):
    session = boto3.session.Session(
        aws_access_key_id=settings.S3_ACCESS_KEY,
        aws_secret_access_key=settings.S3_SECRET_KEY,
        region_name=settings.S3_REGION,
    )
    return session.client(
        "s3",
        endpoint_url=endpoint_url,  # e.g. http://127.0.0.1:9000
        config=BotoConfig(
            s3={"addressing_style": "path"},
            signature_version="s3v4",
        ),
    )


def get_s3_client():
    """
    SDK client for server-side upload of resolved audio.
    """
    return _client(settings.S3_ENDPOINT_URL)


def object_url(key: str) -> str:
    """
    Direct object URL against the PUBLIC endpoint. Matches the processed-asset
    marker built in PipelineConfig, so re-runs pass it through untouched.
    """
    base = (settings.S3_PUBLIC_ENDPOINT or settings.S3_ENDPOINT_URL).rstrip("/")
    return f"{base}/{settings.S3_BUCKET}/{key}"


def upload_file(local_path: str, key: str, content_type: str | None = None) -> str:
    """
    Upload a single file with an optional Content-Type; returns its public URL.
    """
    s3 = get_s3_client()
    extra = {}
    if content_type:
        extra["ContentType"] = content_type
    s3.upload_file(str(local_path), settings.S3_BUCKET, key, ExtraArgs=extra or None)
    return object_url(key)
