"""
AWS integrations layer.
"""
from app.aws.client import get_aws_client
from app.aws.s3 import upload_to_s3

__all__ = [
    "get_aws_client",
    "upload_to_s3",
]
