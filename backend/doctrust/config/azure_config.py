from azure.storage.blob.aio import BlobServiceClient
from azure.storage.blob import generate_blob_sas, BlobSasPermissions, ContentSettings
from datetime import datetime, timedelta, timezone
from azure.core.exceptions import AzureError, ResourceExistsError, ResourceNotFoundError
from typing import Optional, Sequence
import logging

from doctrust.core.config import settings
from doctrust.core.errors import DocTrustError, ErrorKind

logger = logging.getLogger(__name__)

class AzureStorageService:
    """
    BlobStore over one private Azure Blob Storage container.

    Blobs are key-addressed and written once; callers always pick a fresh key
    instead of overwriting an existing object.
    """

    def __init__(self, container_name: str, blob_service_client: Optional[BlobServiceClient] = None):
        # Azure storage credentials
        self.connection_string = settings.AZURE_STORAGE_CONNECTION_STRING
        self.account_name = settings.AZURE_STORAGE_ACCOUNT_NAME
        self.account_key = settings.AZURE_STORAGE_ACCOUNT_KEY

        self.container_name = container_name
        self.blob_service_client = blob_service_client
        self._container_ready = False

    async def get_blob_service_client(self) -> BlobServiceClient:
        """Get a blob service client, creating a new one if necessary"""
        if not self.blob_service_client:
            if not self.connection_string:
                if self.account_name and self.account_key:
                    self.connection_string = f"DefaultEndpointsProtocol=https;AccountName={self.account_name};AccountKey={self.account_key};EndpointSuffix=core.windows.net"
                    logger.info("Created connection string from account credentials")
                else:
                    raise DocTrustError(ErrorKind.STORAGE, "Blob storage is not configured")

            try:
                self.blob_service_client = BlobServiceClient.from_connection_string(self.connection_string)
                logger.info("Successfully initialized Azure Blob Service client")
            except Exception as e:
                logger.error(f"Failed to initialize Azure Blob Service client: {str(e)}")
                raise DocTrustError(ErrorKind.STORAGE, "Blob storage initialization failed") from e

        return self.blob_service_client

    async def _get_container_client(self):
        blob_service_client = await self.get_blob_service_client()
        container_client = blob_service_client.get_container_client(self.container_name)

        if not self._container_ready:
            try:
                # Private container: no public access level
                await container_client.create_container()
                logger.info(f"Created container {self.container_name}")
            except ResourceExistsError:
                pass
            self._container_ready = True

        return container_client

    async def upload(self, key: str, data: bytes, content_type: str) -> None:
        """
        Upload bytes under key. Existing blobs are never overwritten.
        """
        try:
            container_client = await self._get_container_client()
            blob_client = container_client.get_blob_client(key)

            content_settings = ContentSettings(
                content_type=content_type,
                content_disposition=f"inline; filename={key.rsplit('/', 1)[-1]}",
                cache_control="private, max-age=0",
            )

            await blob_client.upload_blob(
                data,
                overwrite=False,
                content_settings=content_settings,
            )
            logger.info(f"Uploaded {len(data)} bytes to {self.container_name}/{key}")
        except DocTrustError:
            raise
        except (AzureError, ValueError) as e:
            logger.error(f"Failed to upload {key} to container {self.container_name}: {str(e)}")
            raise DocTrustError(ErrorKind.STORAGE, "Failed to upload file") from e

    async def download(self, key: str) -> bytes:
        """
        Download a blob's content

        Raises NOT_FOUND when the blob does not exist, STORAGE for other failures.
        """
        try:
            container_client = await self._get_container_client()
            blob_client = container_client.get_blob_client(key)
            download_stream = await blob_client.download_blob()
            content = await download_stream.readall()
            logger.info(f"Successfully downloaded {len(content)} bytes from {self.container_name}/{key}")
            return content
        except DocTrustError:
            raise
        except ResourceNotFoundError as e:
            logger.error(f"Blob '{key}' not found in container '{self.container_name}'")
            raise DocTrustError(ErrorKind.NOT_FOUND, "File not found") from e
        except AzureError as e:
            logger.error(f"Download failed for {self.container_name}/{key}: {str(e)}")
            raise DocTrustError(ErrorKind.STORAGE, "Failed to download file") from e

    async def create_retrieval_url(self, key: str, ttl_seconds: int) -> str:
        """
        Generate a read-only SAS URL valid for ttl_seconds
        """
        try:
            container_client = await self._get_container_client()
            blob_client = container_client.get_blob_client(key)

            # With a bare connection string the shared key lives on the client credential
            credential = getattr(self.blob_service_client, "credential", None)
            account_name = self.account_name or getattr(self.blob_service_client, "account_name", None)
            account_key = self.account_key or getattr(credential, "account_key", None)

            sas_token = generate_blob_sas(
                account_name=account_name,
                container_name=self.container_name,
                blob_name=key,
                account_key=account_key,
                permission=BlobSasPermissions(read=True),
                expiry=datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds),
            )
        except DocTrustError:
            raise
        except (AzureError, ValueError, TypeError) as e:
            logger.error(f"Failed to sign URL for {self.container_name}/{key}: {str(e)}")
            raise DocTrustError(ErrorKind.STORAGE, "Failed to create retrieval URL") from e

        return f"{blob_client.url}?{sas_token}"

    async def remove(self, keys: Sequence[str]) -> None:
        """
        Delete blobs by key; blobs that are already gone are ignored
        """
        if not keys:
            return
        try:
            container_client = await self._get_container_client()
            for key in keys:
                try:
                    await container_client.delete_blob(key)
                    logger.info(f"Deleted {self.container_name}/{key}")
                except ResourceNotFoundError:
                    logger.warning(f"Blob {self.container_name}/{key} already removed")
        except DocTrustError:
            raise
        except AzureError as e:
            logger.error(f"Error deleting files from {self.container_name}: {str(e)}")
            raise DocTrustError(ErrorKind.STORAGE, "Failed to delete file") from e

    async def close(self):
        """
        Close the blob service client and all associated connections
        """
        if self.blob_service_client:
            try:
                await self.blob_service_client.close()
                self.blob_service_client = None
                logger.info(f"Azure Blob Service client closed for {self.container_name}")
            except Exception as e:
                logger.error(f"Error closing Azure Blob Service client: {str(e)}")
