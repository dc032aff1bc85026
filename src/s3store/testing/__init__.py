"""s3store testing utilities."""

from s3store.testing.fake_s3 import DEFAULT_BUCKET_URL, FakeS3Server

__all__ = ["DEFAULT_BUCKET_URL", "FakeS3Server"]
