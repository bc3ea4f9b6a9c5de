"""
Product image storage on S3.

Images are written under products/<product id>/ and handed back as presigned
GET URLs.
"""
import os
import time
import logging
from functools import lru_cache
from typing import Tuple

import boto3

logger = logging.getLogger(__name__)

AWS_REGION = os.getenv("AWS_REGION", "us-east-1")
AWS_BUCKET_NAME = os.getenv("AWS_BUCKET_NAME")
URL_EXPIRES_IN = 3600  # seconds


@lru_cache(maxsize=1)
def get_s3_client():
    return boto3.client("s3", region_name=AWS_REGION)


def image_key(product_id: str, filename: str) -> str:
    return f"products/{product_id}/{int(time.time() * 1000)}-{filename}"


def upload_product_image(product_id: str, filename: str, body: bytes, content_type: str) -> Tuple[str, str]:
    """Store the image bytes and return ``(key, presigned_url)``."""
    s3 = get_s3_client()
    key = image_key(product_id, filename)
    s3.put_object(Bucket=AWS_BUCKET_NAME, Key=key, Body=body, ContentType=content_type)
    url = s3.generate_presigned_url(
        "get_object",
        Params={"Bucket": AWS_BUCKET_NAME, "Key": key},
        ExpiresIn=URL_EXPIRES_IN,
    )
    logger.info("Stored image %s (%d bytes)", key, len(body))
    return key, url
