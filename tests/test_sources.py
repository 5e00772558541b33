"""Tests for sources module."""

import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import requests
from botocore.exceptions import ClientError

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from sources import SourceError, load_source


class TestLocalSource:
    """Local file locators."""

    def test_relative_to_base_dir(self, tmp_path):
        (tmp_path / 'vpc.yml').write_text('Resources: {}')
        assert load_source('vpc.yml', tmp_path) == 'Resources: {}'

    def test_absolute_path(self, tmp_path):
        path = tmp_path / 'vpc.yml'
        path.write_text('abs')
        assert load_source(str(path), Path('/nonexistent')) == 'abs'

    def test_missing_file(self, tmp_path):
        with pytest.raises(SourceError, match='Cannot read'):
            load_source('nope.yml', tmp_path)


class TestHttpSource:
    """http(s) locators."""

    @patch('sources.requests.get')
    def test_fetch(self, mock_get):
        mock_get.return_value = MagicMock(text='Resources: {}')
        assert load_source('https://example.com/vpc.yml') == 'Resources: {}'
        mock_get.assert_called_once_with('https://example.com/vpc.yml', timeout=30)

    @patch('sources.requests.get')
    def test_http_error(self, mock_get):
        mock_get.return_value.raise_for_status.side_effect = requests.exceptions.HTTPError('404')
        with pytest.raises(SourceError, match='Cannot fetch'):
            load_source('https://example.com/vpc.yml')


class TestS3Source:
    """s3:// locators."""

    @patch('sources.boto3.client')
    def test_fetch(self, mock_client):
        mock_client.return_value.get_object.return_value = {
            'Body': MagicMock(read=MagicMock(return_value=b'Resources: {}'))}
        assert load_source('s3://bucket/templates/vpc.yml') == 'Resources: {}'
        mock_client.return_value.get_object.assert_called_once_with(
            Bucket='bucket', Key='templates/vpc.yml')

    @patch('sources.boto3.client')
    def test_error(self, mock_client):
        mock_client.return_value.get_object.side_effect = ClientError(
            {'Error': {'Code': 'NoSuchKey', 'Message': 'missing'}}, 'GetObject')
        with pytest.raises(SourceError):
            load_source('s3://bucket/vpc.yml')

    def test_invalid_locator(self):
        with pytest.raises(SourceError, match='Invalid s3'):
            load_source('s3://bucket')
