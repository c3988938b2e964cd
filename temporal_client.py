"""Temporal client factory.

Creates connections to Temporal Cloud using credentials from environment,
or to a local dev server.
"""

import os
import ssl
from pathlib import Path

# Load .env file if it exists
from dotenv import load_dotenv
env_path = Path(__file__).resolve().parent / ".env"
if env_path.exists():
    load_dotenv(env_path)

from temporalio.client import Client


LOCAL_ENDPOINT = "localhost:7233"


async def get_temporal_client(local: bool = False) -> Client:
    """Create and return a Temporal client.

    Reads configuration from environment variables:
    - TEMPORAL_ENDPOINT: Temporal Cloud endpoint (e.g., "temporal.example.com:7233")
    - TEMPORAL_NAMESPACE: Namespace (e.g., "default")
    - TEMPORAL_API_KEY: API key for Cloud
    - TEMPORAL_CERT_PATH: Path to client certificate (optional, for mTLS)

    Args:
        local: Connect to a local dev server without TLS

    Returns:
        Connected Temporal client

    Raises:
        ValueError: If required environment variables are missing
    """
    namespace = os.getenv("TEMPORAL_NAMESPACE", "default")

    if local:
        return await Client.connect(os.getenv("TEMPORAL_ENDPOINT", LOCAL_ENDPOINT), namespace=namespace)

    endpoint = os.getenv("TEMPORAL_ENDPOINT")
    api_key = os.getenv("TEMPORAL_API_KEY")
    cert_path = os.getenv("TEMPORAL_CERT_PATH")

    if not endpoint:
        raise ValueError(
            "TEMPORAL_ENDPOINT environment variable not set. "
            "Set to your Temporal Cloud endpoint (e.g., 'temporal.example.com:7233')"
        )

    if not api_key:
        raise ValueError(
            "TEMPORAL_API_KEY environment variable not set. "
            "Set to your Temporal Cloud API key"
        )

    tls_config = ssl.create_default_context()
    if cert_path:
        tls_config.load_cert_chain(cert_path)

    return await Client.connect(
        target_host=endpoint,
        namespace=namespace,
        tls=tls_config,
        api_key=api_key,
    )
