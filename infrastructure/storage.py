# ============================================================================
# BLOB STORAGE INFRASTRUCTURE
# ============================================================================
# EPOCH: 1 - ELASTIC FAN-OUT
# STATUS: Infrastructure - Azure Blob Storage operations
# PURPOSE: BlobStore adapter for directive files, task output and reports
# CREATED: 19 OCT 2026
# ============================================================================
"""
Blob Storage Infrastructure

Provides BlobRepository, the BlobStore implementation on Azure Blob
Storage. Every key lives in one container:

- put_text:   Write (overwrite) a text blob
- get_text:   Read a text blob
- exists:     Check if blob exists
- locator:    blob URL for a key

Uses DefaultAzureCredential for authentication (works with Managed Identity).
Writes overwrite, so re-running a task or re-rendering a report under the
same key is harmless.
"""

import logging
import os
from typing import Optional

from azure.core.exceptions import (
    ResourceExistsError,
    ResourceNotFoundError,
    ServiceRequestError,
    ServiceResponseError,
)
from azure.storage.blob import ContentSettings
from azure.storage.blob.aio import BlobServiceClient, ContainerClient

from core.config import StorageDefaults
from infrastructure.base import (
    BaseAdapter,
    BlobNotFoundError,
    BlobStore,
    InfrastructureError,
    TransientServiceError,
)

logger = logging.getLogger(__name__)


# ============================================================================
# BLOB REPOSITORY
# ============================================================================

class BlobRepository(BaseAdapter, BlobStore):
    """
    Azure Blob Storage repository.

    Usage:
        repo = BlobRepository(StorageDefaults.from_env())
        locator = await repo.put_text("output/job-1.html", html, "text/html")
        text = await repo.get_text("input/abc/directives.txt")
    """

    def __init__(
        self,
        settings: Optional[StorageDefaults] = None,
        connection_string: Optional[str] = None,
    ):
        super().__init__()
        self.settings = settings or StorageDefaults.from_env()
        self.connection_string = connection_string or os.environ.get("STORAGE_CONNECTION_STRING")

        # Lazy initialization of Azure clients
        self._blob_service: Optional[BlobServiceClient] = None
        self._container_client: Optional[ContainerClient] = None
        self._credential = None

        logger.info(f"BlobRepository initialized for container: {self.settings.container}")

    def _classify(self, error: Exception) -> type:
        if isinstance(error, ResourceNotFoundError):
            return BlobNotFoundError
        if isinstance(error, (ServiceRequestError, ServiceResponseError)):
            return TransientServiceError
        return InfrastructureError

    # ========================================================================
    # AZURE CLIENT INITIALIZATION
    # ========================================================================

    def _get_credential(self):
        """Get Azure credential (lazy initialization)."""
        if self._credential is None:
            # Check for User-Assigned Managed Identity
            client_id = os.environ.get("AZURE_CLIENT_ID")

            if client_id:
                from azure.identity.aio import ManagedIdentityCredential
                self._credential = ManagedIdentityCredential(client_id=client_id)
                logger.debug("ManagedIdentityCredential initialized with client_id")
            else:
                from azure.identity.aio import DefaultAzureCredential
                self._credential = DefaultAzureCredential()
                logger.debug("DefaultAzureCredential initialized")
        return self._credential

    def _get_blob_service(self) -> BlobServiceClient:
        """Get BlobServiceClient (lazy initialization)."""
        if self._blob_service is None:
            if self.connection_string:
                self._blob_service = BlobServiceClient.from_connection_string(self.connection_string)
            else:
                account_url = self.settings.resolved_account_url
                self._blob_service = BlobServiceClient(
                    account_url=account_url,
                    credential=self._get_credential(),
                )
                logger.debug(f"BlobServiceClient initialized for {account_url}")
        return self._blob_service

    def _get_container_client(self) -> ContainerClient:
        if self._container_client is None:
            self._container_client = self._get_blob_service().get_container_client(
                self.settings.container
            )
        return self._container_client

    async def ensure_container(self) -> None:
        """Create the container if it does not exist."""
        with self._error_context("create container", self.settings.container):
            try:
                await self._get_container_client().create_container()
                logger.info(f"Created container: {self.settings.container}")
            except ResourceExistsError:
                pass

    # ========================================================================
    # OPERATIONS
    # ========================================================================

    async def put_text(self, key: str, text: str, content_type: str = "text/plain") -> str:
        blob = self._get_container_client().get_blob_client(key)
        with self._error_context("upload blob", key):
            await blob.upload_blob(
                text.encode("utf-8"),
                overwrite=True,
                content_settings=ContentSettings(content_type=f"{content_type}; charset=utf-8"),
            )
        logger.debug(f"Uploaded blob {key} ({len(text)} chars)")
        return self.locator(key)

    async def get_text(self, key: str) -> str:
        blob = self._get_container_client().get_blob_client(key)
        with self._error_context("download blob", key):
            stream = await blob.download_blob()
            data = await stream.readall()
        return data.decode("utf-8")

    async def exists(self, key: str) -> bool:
        blob = self._get_container_client().get_blob_client(key)
        with self._error_context("check blob", key):
            return await blob.exists()

    def locator(self, key: str) -> str:
        return f"{self.settings.resolved_account_url.rstrip('/')}/{self.settings.container}/{key}"

    async def close(self) -> None:
        if self._container_client is not None:
            await self._container_client.close()
            self._container_client = None
        if self._blob_service is not None:
            await self._blob_service.close()
            self._blob_service = None
        if self._credential is not None:
            await self._credential.close()
            self._credential = None


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "BlobRepository",
]
