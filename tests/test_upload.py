import pytest
from botocore.exceptions import EndpointConnectionError

from cdnbench.errors import UploadFailure
from cdnbench.upload import (
    DEFAULT_S3_ENDPOINT,
    S3Credentials,
    build_s3_key,
    default_s3_region,
    make_s3_client,
    normalize_endpoint,
    upload_file_s3,
)


class FakeS3Client:
    def __init__(self, response=None, error=None):
        self.response = response or {"ResponseMetadata": {"HTTPStatusCode": 200}, "ETag": '"d41d8cd9"'}
        self.error = error
        self.calls = []

    def put_object(self, **kwargs):
        kwargs["Body"] = kwargs["Body"].read()
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.response


def factory_for(client, created=None):
    def client_factory(region, endpoint, credentials, timeout_ms, proxy):
        if created is not None:
            created.append((region, endpoint, credentials, timeout_ms, proxy))
        return client

    return client_factory


@pytest.fixture
def report_file(tmp_path):
    path = tmp_path / "20240501-100000.csv"
    path.write_text("timestamp,page_id\n")
    return path


CREDENTIALS = S3Credentials("key", "secret")


def test_upload_puts_file(report_file):
    client = FakeS3Client()
    created = []

    result = upload_file_s3(
        bucket="bench",
        key="runs/20240501-100000.csv",
        region=None,
        endpoint="storage.yandexcloud.net",
        credentials=CREDENTIALS,
        file_path=report_file,
        proxy="http://proxy:3128",
        client_factory=factory_for(client, created),
    )

    assert result.status == 200
    assert result.etag == "d41d8cd9"
    assert result.uri == "s3://bench/runs/20240501-100000.csv"
    assert created == [("ru-central1", "https://storage.yandexcloud.net", CREDENTIALS, 30000, "http://proxy:3128")]
    assert client.calls == [{
        "Bucket": "bench",
        "Key": "runs/20240501-100000.csv",
        "Body": b"timestamp,page_id\n",
        "ContentType": "text/csv",
    }]


def test_upload_defaults_endpoint(report_file):
    created = []
    upload_file_s3("bench", "k.csv", None, None, CREDENTIALS, report_file, client_factory=factory_for(FakeS3Client(), created))
    assert created[0][1] == DEFAULT_S3_ENDPOINT


def test_upload_rejects_incomplete_credentials(report_file):
    with pytest.raises(UploadFailure, match="credentials"):
        upload_file_s3("bench", "k.csv", None, None, S3Credentials("key", ""), report_file,
                       client_factory=factory_for(FakeS3Client()))


def test_upload_non_2xx_fails(report_file):
    client = FakeS3Client(response={"ResponseMetadata": {"HTTPStatusCode": 403}})
    with pytest.raises(UploadFailure, match="403"):
        upload_file_s3("bench", "k.csv", None, None, CREDENTIALS, report_file, client_factory=factory_for(client))


def test_upload_botocore_error_fails(report_file):
    client = FakeS3Client(error=EndpointConnectionError(endpoint_url="https://s3.example.com"))
    with pytest.raises(UploadFailure) as exc_info:
        upload_file_s3("bench", "k.csv", None, None, CREDENTIALS, report_file, client_factory=factory_for(client))
    assert exc_info.value.reason == "upload_failed"


def test_upload_missing_file_fails(tmp_path):
    with pytest.raises(UploadFailure):
        upload_file_s3("bench", "k.csv", None, None, CREDENTIALS, tmp_path / "missing.csv",
                       client_factory=factory_for(FakeS3Client()))


def test_endpoint_and_region_helpers():
    assert normalize_endpoint(None) is None
    assert normalize_endpoint("s3.example.com") == "https://s3.example.com"
    assert normalize_endpoint("http://minio:9000") == "http://minio:9000"
    assert default_s3_region("https://storage.yandexcloud.net") == "ru-central1"
    assert default_s3_region("https://s3.example.com") == "us-east-1"
    assert default_s3_region(None) is None


def test_build_s3_key():
    assert build_s3_key(None, "20240501-100000") == "20240501-100000.csv"
    assert build_s3_key("/runs/moscow/", "20240501-100000") == "runs/moscow/20240501-100000.csv"


def test_make_s3_client_uses_path_addressing():
    client = make_s3_client("us-east-1", "http://minio:9000", CREDENTIALS, 5000, proxy="http://proxy:3128")
    assert client.meta.endpoint_url == "http://minio:9000"
    assert client.meta.config.s3 == {"addressing_style": "path"}
    assert client.meta.config.proxies == {"http": "http://proxy:3128", "https": "http://proxy:3128"}


def test_upload_client_construction_error_fails(report_file):
    def client_factory(region, endpoint, credentials, timeout_ms, proxy):
        raise ValueError(f"Invalid endpoint: {endpoint}")

    with pytest.raises(UploadFailure, match="Invalid endpoint"):
        upload_file_s3("bench", "k.csv", None, "https://bad host:9000", CREDENTIALS, report_file,
                       client_factory=client_factory)


def test_upload_malformed_endpoint_with_real_client(report_file):
    with pytest.raises(UploadFailure):
        upload_file_s3("bench", "k.csv", "us-east-1", "https://bad host:9000", CREDENTIALS, report_file)
