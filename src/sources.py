"""Template and policy source loading.

Supported locators:
- Local path (relative paths resolve against the project document's directory)
- http:// and https:// URLs (fetched with requests)
- s3://bucket/key (fetched with boto3)
"""

import logging
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import boto3
import requests
from botocore.exceptions import BotoCoreError, ClientError

from config import ConfigError

logger = logging.getLogger(__name__)

HTTP_TIMEOUT = 30


class SourceError(ConfigError):
    """A source locator could not be read."""


def load_source(locator: str, base_dir: Optional[Path] = None) -> str:
    """Read the text behind a locator.

    Args:
        locator: Path, http(s):// URL or s3:// URL
        base_dir: Directory relative paths are resolved against

    Raises:
        SourceError: If the source cannot be read
    """
    parsed = urlparse(locator)
    if parsed.scheme in ('http', 'https'):
        return _load_http(locator)
    if parsed.scheme == 's3':
        return _load_s3(parsed.netloc, parsed.path.lstrip('/'))

    path = Path(locator).expanduser()
    if not path.is_absolute() and base_dir is not None:
        path = base_dir / path
    logger.debug(f"Reading source file {path}")
    try:
        return path.read_text(encoding='utf-8')
    except OSError as e:
        raise SourceError(f"Cannot read source {path}: {e}") from e


def _load_http(url: str) -> str:
    logger.debug(f"Fetching source {url}")
    try:
        resp = requests.get(url, timeout=HTTP_TIMEOUT)
        resp.raise_for_status()
    except requests.exceptions.RequestException as e:
        raise SourceError(f"Cannot fetch source {url}: {e}") from e
    return resp.text


def _load_s3(bucket: str, key: str) -> str:
    if not bucket or not key:
        raise SourceError(f"Invalid s3 locator: s3://{bucket}/{key}")
    logger.debug(f"Fetching source s3://{bucket}/{key}")
    try:
        obj = boto3.client('s3').get_object(Bucket=bucket, Key=key)
        body: bytes = obj['Body'].read()
    except (ClientError, BotoCoreError) as e:
        raise SourceError(f"Cannot fetch source s3://{bucket}/{key}: {e}") from e
    return body.decode('utf-8')
