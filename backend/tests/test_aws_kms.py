"""Tests for the AWS KMS client against a stubbed boto3 client."""

from datetime import datetime, timezone

import boto3
import pytest
from botocore.stub import Stubber

from keymanager.config import Settings
from keymanager.core.exceptions import ConfigurationError, KMSAuthenticationError, KMSError
from keymanager.core.kms.aws import AWSKMSClient

CREATED = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def settings():
    return Settings(
        backend="aws_kms",
        region="us-east-1",
        access_key_id="testing",
        secret_access_key="testing",
        deletion_window_days=7,
    )


@pytest.fixture
def boto_client():
    return boto3.client(
        "kms",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


@pytest.fixture
def stubber(boto_client):
    with Stubber(boto_client) as stub:
        yield stub
        stub.assert_no_pending_responses()


@pytest.fixture
def client(settings, boto_client):
    return AWSKMSClient(settings, client=boto_client)


class TestAWSKeyOperations:
    """Test request shaping and response parsing."""

    @pytest.mark.asyncio
    async def test_create_key(self, client, stubber):
        stubber.add_response(
            "create_key",
            {"KeyMetadata": {"KeyId": "kms-1", "CreationDate": CREATED}},
            {
                "Description": "SPIRE_SERVER_KEY:svid-1",
                "KeyUsage": "SIGN_VERIFY",
                "KeySpec": "ECC_NIST_P256",
            },
        )

        created = await client.create_key("ECC_NIST_P256", "SIGN_VERIFY", "SPIRE_SERVER_KEY:svid-1")

        assert created.kms_key_id == "kms-1"
        assert created.creation_date == CREATED

    @pytest.mark.asyncio
    async def test_describe_key(self, client, stubber):
        stubber.add_response(
            "describe_key",
            {"KeyMetadata": {
                "KeyId": "kms-1",
                "KeySpec": "RSA_4096",
                "Enabled": True,
                "Description": "SPIRE_SERVER_KEY:svid-1",
                "CreationDate": CREATED,
                "KeyState": "Enabled",
            }},
            {"KeyId": "kms-1"},
        )

        description = await client.describe_key("kms-1")

        assert description.key_spec == "RSA_4096"
        assert description.enabled is True
        assert description.description == "SPIRE_SERVER_KEY:svid-1"
        assert description.creation_date == CREATED

    @pytest.mark.asyncio
    async def test_describe_key_legacy_spec_field(self, client, stubber):
        stubber.add_response(
            "describe_key",
            {"KeyMetadata": {
                "KeyId": "kms-1",
                "CustomerMasterKeySpec": "ECC_NIST_P384",
                "Enabled": False,
                "CreationDate": CREATED,
                "KeyState": "Disabled",
            }},
            {"KeyId": "kms-1"},
        )

        description = await client.describe_key("kms-1")

        assert description.key_spec == "ECC_NIST_P384"
        assert description.enabled is False
        assert description.description == ""
        assert description.key_state == "Disabled"

    @pytest.mark.asyncio
    async def test_get_public_key(self, client, stubber):
        stubber.add_response(
            "get_public_key",
            {"KeyId": "kms-1", "PublicKey": b"der-bytes"},
            {"KeyId": "kms-1"},
        )

        assert await client.get_public_key("kms-1") == b"der-bytes"

    @pytest.mark.asyncio
    async def test_list_keys_follows_pages(self, client, stubber):
        stubber.add_response(
            "list_keys",
            {"Keys": [{"KeyId": "kms-1"}, {"KeyId": "kms-2"}], "Truncated": True, "NextMarker": "page-2"},
            {},
        )
        stubber.add_response(
            "list_keys",
            {"Keys": [{"KeyId": "kms-3"}], "Truncated": False},
            {"Marker": "page-2"},
        )

        assert await client.list_keys() == ["kms-1", "kms-2", "kms-3"]

    @pytest.mark.asyncio
    async def test_schedule_key_deletion_uses_window(self, client, stubber):
        stubber.add_response(
            "schedule_key_deletion",
            {"KeyId": "kms-1", "DeletionDate": CREATED},
            {"KeyId": "kms-1", "PendingWindowInDays": 7},
        )

        await client.schedule_key_deletion("kms-1")

    @pytest.mark.asyncio
    async def test_sign_digest(self, client, stubber):
        digest = b"\x01" * 32
        stubber.add_response(
            "sign",
            {"KeyId": "kms-1", "Signature": b"signature", "SigningAlgorithm": "ECDSA_SHA_256"},
            {
                "KeyId": "kms-1",
                "Message": digest,
                "MessageType": "DIGEST",
                "SigningAlgorithm": "ECDSA_SHA_256",
            },
        )

        assert await client.sign_digest("kms-1", digest, "ECDSA_SHA_256") == b"signature"


class TestAWSErrors:
    """Test mapping of botocore failures to KMS errors."""

    @pytest.mark.asyncio
    async def test_service_error(self, client, stubber):
        stubber.add_client_error(
            "describe_key",
            service_error_code="NotFoundException",
            service_message="Key does not exist",
        )

        with pytest.raises(KMSError) as exc_info:
            await client.describe_key("missing")

        assert exc_info.value.code == "NotFoundException"
        assert not isinstance(exc_info.value, KMSAuthenticationError)
        assert exc_info.value.__cause__ is not None

    @pytest.mark.asyncio
    async def test_access_denied(self, client, stubber):
        stubber.add_client_error(
            "sign",
            service_error_code="AccessDeniedException",
            service_message="not authorized",
            http_status_code=400,
        )

        with pytest.raises(KMSAuthenticationError) as exc_info:
            await client.sign_digest("kms-1", b"\x00" * 32, "ECDSA_SHA_256")

        assert exc_info.value.code == "AccessDeniedException"

    @pytest.mark.asyncio
    async def test_listing_failure(self, client, stubber):
        stubber.add_client_error("list_keys", service_error_code="KMSInternalException", http_status_code=500)

        with pytest.raises(KMSError):
            await client.list_keys()

    @pytest.mark.asyncio
    async def test_health_reports_failure(self, client, stubber):
        stubber.add_client_error("list_keys", service_error_code="KMSInternalException", http_status_code=500)

        health = await client.verify_health()

        assert health["healthy"] is False
        assert health["backend"] == "aws_kms"
        assert "KMSInternalException" in health["error"]


class TestAWSClientConstruction:
    """Test boto3 client construction from settings."""

    def test_builds_regional_client(self, settings):
        client = AWSKMSClient(settings)

        assert client._client.meta.region_name == "us-east-1"
        assert client._client.meta.config.retries["mode"] == "standard"

    def test_custom_endpoint(self):
        settings = Settings(
            backend="aws_kms",
            region="eu-west-1",
            endpoint="http://localhost:4566",
        )
        client = AWSKMSClient(settings)

        assert client._client.meta.endpoint_url == "http://localhost:4566"

    def test_malformed_endpoint(self):
        settings = Settings(backend="aws_kms", region="us-east-1", endpoint="not a url")

        with pytest.raises(ConfigurationError) as exc_info:
            AWSKMSClient(settings)

        assert isinstance(exc_info.value.__cause__, ValueError)

    @pytest.mark.asyncio
    async def test_close(self, settings, boto_client):
        client = AWSKMSClient(settings, client=boto_client)
        await client.close()

        assert client._client is None
