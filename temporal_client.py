"""Temporal client factory.

Connects to Temporal Cloud when an API key is configured, or to a local
Temporal dev server otherwise.
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


async def get_temporal_client() -> Client:
    """Create and return a Temporal client.

    Reads configuration from environment variables:
    - TEMPORAL_ENDPOINT: host:port (default: localhost:7233)
    - TEMPORAL_NAMESPACE: Namespace (default: "default")
    - TEMPORAL_API_KEY: Cloud API key; enables TLS when set
    - TEMPORAL_CERT_PATH: client certificate chain for mTLS (optional)

    Raises:
        ValueError: a Cloud endpoint is configured without an API key
    """
    endpoint = os.getenv("TEMPORAL_ENDPOINT", LOCAL_ENDPOINT)
    namespace = os.getenv("TEMPORAL_NAMESPACE", "default")
    api_key = os.getenv("TEMPORAL_API_KEY")
    cert_path = os.getenv("TEMPORAL_CERT_PATH")

    if not api_key:
        if endpoint.endswith(".tmprl.cloud:7233"):
            raise ValueError(
                "TEMPORAL_API_KEY environment variable not set. "
                "Set it to your Temporal Cloud API key"
            )
        return await Client.connect(endpoint, namespace=namespace)

    tls_config = ssl.create_default_context()
    if cert_path:
        tls_config.load_cert_chain(cert_path)

    return await Client.connect(
        target_host=endpoint,
        namespace=namespace,
        tls=tls_config,
        api_key=api_key,
    )
