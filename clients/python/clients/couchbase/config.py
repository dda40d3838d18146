import os
import asyncio
import logging
from datetime import timedelta
from couchbase.auth import PasswordAuthenticator
from acouchbase.cluster import Cluster as AsyncCluster
from couchbase.options import ClusterOptions

logger = logging.getLogger(__name__)

# Environment variables
USERNAME = os.environ.get('COUCHBASE_USERNAME', '')
PASSWORD = os.environ.get('COUCHBASE_PASSWORD', '')
DEFAULT_BUCKET_NAME = os.environ.get('COUCHBASE_BUCKET', '')
HOST = os.environ.get('COUCHBASE_HOST', '')
PROTOCOL = os.environ.get('COUCHBASE_PROTOCOL', '')

VALID_PROTOCOLS = ('couchbase', 'couchbases')


def config_errors(
    username: str = None,
    password: str = None,
    host: str = None,
    bucket: str = None,
    protocol: str = None,
) -> list:
    """Return every problem with the Couchbase settings (empty when valid).

    Arguments default to the values read from the environment at import.
    """
    username = USERNAME if username is None else username
    password = PASSWORD if password is None else password
    host = HOST if host is None else host
    bucket = DEFAULT_BUCKET_NAME if bucket is None else bucket
    protocol = PROTOCOL if protocol is None else protocol

    errors = []
    if not username:
        errors.append("COUCHBASE_USERNAME is missing or empty")
    if not password:
        errors.append("COUCHBASE_PASSWORD is missing or empty")
    if not host:
        errors.append("COUCHBASE_HOST is missing or empty")
    if not bucket:
        errors.append("COUCHBASE_BUCKET is missing or empty")
    if protocol not in VALID_PROTOCOLS:
        errors.append(f"COUCHBASE_PROTOCOL '{protocol}' is invalid. Must be one of {VALID_PROTOCOLS}")
    return errors


def validate_config() -> None:
    errors = config_errors()
    if errors:
        raise ValueError(f"Invalid Couchbase Configuration:\n" + "\n".join(errors))


# Module-level cluster cache
_cluster = None

async def get_cluster(max_retries: int = 10, initial_delay: float = 1.0, max_delay: float = 30.0):
    """
    Returns a cached Couchbase cluster connection.
    Creates a new connection if one doesn't exist.
    Implements retry with exponential backoff for startup race conditions.
    """
    global _cluster
    if _cluster is None:
        validate_config()
        auth = PasswordAuthenticator(USERNAME, PASSWORD)
        url = PROTOCOL + "://" + HOST
        delay = initial_delay

        for attempt in range(1, max_retries + 1):
            try:
                cluster = await AsyncCluster.connect(url, ClusterOptions(auth))
                break
            except Exception as e:
                if attempt == max_retries:
                    raise
                logger.warning(f"Couchbase connect attempt {attempt} failed: {e}")
                await asyncio.sleep(delay)
                delay = min(delay * 2, max_delay)  # Exponential backoff with cap

        await cluster.wait_until_ready(timedelta(seconds=50))
        _cluster = cluster
    return _cluster

async def check_connection():
    """
    Explicitly checks the connection to the Couchbase cluster.
    Useful for startup checks.
    """
    cluster = await get_cluster()
    await cluster.ping()
