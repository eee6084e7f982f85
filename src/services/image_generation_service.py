"""Image Generation Service - Runware cover art and durable migration."""

import json
import logging
import time
import uuid
from typing import Optional

import httpx

from services.r2_storage import extension_for_content_type
from services.tts_service import MediaStore

logger = logging.getLogger(__name__)

RUNWARE_API_BASE = "https://api.runware.ai/v1"
DEFAULT_RUNWARE_MODEL_ID = "runware:101@1"


class ImageGenerationServiceError(Exception):
    """Error from image generation service."""

    pass


class ImageGenerationService:
    """Text-to-image through the Runware API.

    Returned URLs are ephemeral; ImageMigrator copies them to durable storage.
    """

    def __init__(
        self,
        runware_api_key: str,
        model_id: str = DEFAULT_RUNWARE_MODEL_ID,
        width: int = 1024,
        height: int = 1024,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the image generation service.

        Args:
            runware_api_key: Runware API key
            model_id: Runware model identifier
            width: Image width in pixels
            height: Image height in pixels
            client: Optional shared httpx client
        """
        self.runware_api_key = runware_api_key
        self.model_id = model_id
        self.width = width
        self.height = height
        # Long timeout for image generation (can take a while)
        self.client = client or httpx.AsyncClient(timeout=120.0)

    def is_configured(self) -> bool:
        """Check if Runware API key is configured."""
        return bool(self.runware_api_key)

    async def generate_runware(self, prompt: str) -> str:
        """Generate one image and return its ephemeral URL.

        Raises:
            ImageGenerationServiceError: If generation fails or returns no image
        """
        if not self.is_configured():
            raise ImageGenerationServiceError(
                "RUNWARE_API_KEY not configured. Set it in your .env file."
            )

        headers = {
            "Authorization": f"Bearer {self.runware_api_key}",
            "Content-Type": "application/json",
        }
        payload = [
            {
                "taskType": "imageInference",
                "taskUUID": str(uuid.uuid4()),
                "positivePrompt": prompt,
                "model": self.model_id,
                "width": self.width,
                "height": self.height,
                "numberResults": 1,
            }
        ]

        start_time = time.time()
        try:
            response = await self.client.post(RUNWARE_API_BASE, headers=headers, json=payload)
            response.raise_for_status()
            result_data = response.json()
        except httpx.TimeoutException as e:
            raise ImageGenerationServiceError("Runware request timed out") from e
        except httpx.HTTPStatusError as e:
            try:
                error_detail = json.dumps(e.response.json())
            except ValueError:
                error_detail = e.response.text or str(e)
            raise ImageGenerationServiceError(f"Runware API error: {error_detail}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise ImageGenerationServiceError(f"Runware image generation failed: {e}") from e

        for item in result_data.get("data", []):
            image_url = item.get("imageURL")
            if image_url:
                elapsed_ms = int((time.time() - start_time) * 1000)
                logger.info(f"Runware generated image in {elapsed_ms}ms")
                return image_url

        raise ImageGenerationServiceError("Runware returned no image URL")

    async def synthesize(self, prompt: str) -> Optional[str]:
        """Generate an image, retrying once on failure.

        Returns:
            Ephemeral image URL, or None after two failed attempts
        """
        for attempt in (1, 2):
            try:
                return await self.generate_runware(prompt)
            except ImageGenerationServiceError as e:
                logger.warning(f"Image generation attempt {attempt} failed: {e}")
        return None

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()


class ImageMigrator:
    """Copies ephemeral image URLs into the durable media store."""

    def __init__(
        self,
        store: Optional[MediaStore],
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.store = store
        self.client = client or httpx.AsyncClient(timeout=60.0, follow_redirects=True)

    async def migrate(self, url: str) -> str:
        """Download the image and re-upload it under images/.

        Returns:
            Durable public URL, or the original URL if migration is impossible
        """
        if self.store is None:
            logger.info("No media store configured, keeping ephemeral image URL")
            return url

        try:
            response = await self.client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Image download failed, keeping ephemeral URL: {e}")
            return url

        content_type = response.headers.get("content-type", "image/png")
        extension = extension_for_content_type(content_type, "png")
        # Upload with a canonical type so the stored extension matches
        canonical_type = {"jpg": "image/jpeg", "webp": "image/webp"}.get(extension, "image/png")

        try:
            durable_url = await self.store.upload(response.content, canonical_type, "images")
        except Exception as e:
            logger.warning(f"Image upload failed, keeping ephemeral URL: {e}")
            return url

        logger.info(f"Migrated image to {durable_url}")
        return durable_url

    async def close(self) -> None:
        await self.client.aclose()
