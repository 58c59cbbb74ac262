"""Fetcher for raw ICS file content."""
import logging
import time
from urllib.parse import urlparse

import boto3
import requests
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)


class IcsFetcher:
    """Fetch ICS content from an HTTP(S) URL or an S3 object."""

    MAX_RETRIES = 3
    BASE_DELAY = 1  # seconds

    def __init__(self, timeout: int = 30):
        """
        Initialize the fetcher.

        Args:
            timeout: HTTP request timeout in seconds (default: 30)
        """
        self.timeout = timeout

    def fetch_content(self, file_id: str) -> str:
        """
        Fetch the ICS file identified by file_id.

        Args:
            file_id: "s3://bucket/key" or an http(s) URL

        Returns:
            File content decoded as UTF-8

        Raises:
            ValueError: If the identifier scheme is not supported
            requests.RequestException: If all HTTP retry attempts fail
            botocore.exceptions.ClientError: If the S3 object cannot be read
        """
        parsed = urlparse(file_id)
        logger.info(f"Fetching ICS file: {file_id}")

        if parsed.scheme == 's3':
            content = self._fetch_s3_object(parsed.netloc, parsed.path.lstrip('/'))
        elif parsed.scheme in ('http', 'https'):
            content = self._fetch_url(file_id)
        else:
            raise ValueError(f"Unsupported ICS file identifier: {file_id!r}")

        logger.info(f"Fetched {len(content)} characters of ICS content")
        return content

    def _fetch_url(self, url: str) -> str:
        """
        Fetch a URL with exponential backoff retry.

        Raises:
            requests.RequestException: If all retry attempts fail
        """
        for attempt in range(self.MAX_RETRIES):
            try:
                logger.info(f"Fetching ICS URL (attempt {attempt + 1}/{self.MAX_RETRIES})")
                response = requests.get(url, timeout=self.timeout)
                response.raise_for_status()
                return response.content.decode('utf-8-sig', errors='replace')

            except requests.RequestException as e:
                if attempt < self.MAX_RETRIES - 1:
                    delay = self.BASE_DELAY * (2 ** attempt)
                    logger.warning(
                        f"Request failed (attempt {attempt + 1}/{self.MAX_RETRIES}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                else:
                    logger.error(
                        f"All {self.MAX_RETRIES} retry attempts failed. Last error: {e}"
                    )
                    raise

    def _fetch_s3_object(self, bucket: str, key: str) -> str:
        try:
            response = boto3.client('s3').get_object(Bucket=bucket, Key=key)
        except ClientError as e:
            logger.error(f"Error reading s3://{bucket}/{key}: {e}")
            raise
        return response['Body'].read().decode('utf-8-sig', errors='replace')
