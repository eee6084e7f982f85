"""TTS Service - ElevenLabs narration for generated prayers."""

import base64
import io
import logging
import re
import wave
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

logger = logging.getLogger(__name__)

ELEVENLABS_API_BASE = "https://api.elevenlabs.io/v1"
DEFAULT_MODEL_ID = "eleven_multilingual_v2"
# Raw 16-bit mono PCM; wrapped into WAV locally so chunks can be merged
PCM_OUTPUT_FORMAT = "pcm_24000"
PCM_SAMPLE_RATE = 24000
PCM_SAMPLE_WIDTH = 2
TTS_CHUNK_MAX_CHARS = 2500

# Voices offered in the admin batch screen
VOICE_NAMES = {
    "7i7dgyCkKt4c16dLtwT3": "David - Epic Trailer",
    "pNInz6obpgDQGcFmaJgB": "Pastor Gabriel",
    "wBXNqKUATyqu0RtYt25i": "Adam",
    "VR6AewLTigWG4xSOukaG": "Padre Miguel",
    "EXAVITQu4vr4xnSDxMaL": "Pastora Maria",
    "ThT5KcBeYPX3keUQqHPh": "Irmã Clara",
}


class TTSServiceError(Exception):
    """Error from TTS service."""

    pass


class MediaStore(Protocol):
    """Durable object store for generated media."""

    async def upload(self, data: bytes, content_type: str, prefix: str) -> str:
        ...


@dataclass
class SynthesizedAudio:
    """Narration stored somewhere addressable."""

    audio_url: str
    voice_id_used: str
    duration_seconds: int

    @property
    def voice_name(self) -> Optional[str]:
        return voice_name(self.voice_id_used)


def voice_name(voice_id: Optional[str]) -> Optional[str]:
    """Display name for a known voice id."""
    if not voice_id:
        return None
    return VOICE_NAMES.get(voice_id)


class TTSService:
    """HTTP client for ElevenLabs text-to-speech."""

    def __init__(
        self,
        api_key: str,
        model_id: str = DEFAULT_MODEL_ID,
        store: Optional[MediaStore] = None,
        client: Optional[httpx.AsyncClient] = None,
        chunk_max_chars: int = TTS_CHUNK_MAX_CHARS,
    ):
        """Initialize TTS service.

        Args:
            api_key: ElevenLabs API key
            model_id: ElevenLabs model id
            store: Durable store for the finished WAV; without one a data URL is returned
            client: Optional shared httpx client
            chunk_max_chars: Max characters per synthesis request
        """
        self.api_key = api_key
        self.model_id = model_id
        self.store = store
        self.chunk_max_chars = chunk_max_chars
        # Long timeout: a full prayer can take a while to render
        self.client = client or httpx.AsyncClient(timeout=300.0)

    def _split_text_chunks(self, text: str, max_chars: Optional[int] = None) -> list[str]:
        """Split long text into sentence-aware chunks, keeping paragraph breaks."""
        max_chars = max_chars or self.chunk_max_chars
        normalized = "\n\n".join(
            " ".join(paragraph.split())
            for paragraph in re.split(r"\n\s*\n", text.strip())
            if paragraph.strip()
        )
        if not normalized:
            return []
        if len(normalized) <= max_chars:
            return [normalized]

        chunks: list[str] = []
        current = ""

        def append_part(part: str) -> None:
            nonlocal current
            if not current:
                current = part
                return
            candidate = f"{current} {part}"
            if len(candidate) <= max_chars:
                current = candidate
                return
            chunks.append(current)
            current = part

        for sentence in re.split(r"(?<=[.!?])\s+", normalized):
            sentence = sentence.strip()
            if not sentence:
                continue
            if len(sentence) <= max_chars:
                append_part(sentence)
                continue

            # Hard wrap overlong sentences by word boundaries
            word_chunk = ""
            for word in sentence.split():
                candidate = f"{word_chunk} {word}" if word_chunk else word
                if len(candidate) <= max_chars:
                    word_chunk = candidate
                else:
                    append_part(word_chunk)
                    word_chunk = word
            if word_chunk:
                append_part(word_chunk)

        if current:
            chunks.append(current)

        return chunks

    @staticmethod
    def _pcm_to_wav(pcm: bytes) -> bytes:
        """Wrap raw PCM from the API in a WAV container."""
        output = io.BytesIO()
        with wave.open(output, "wb") as wav_out:
            wav_out.setnchannels(1)
            wav_out.setsampwidth(PCM_SAMPLE_WIDTH)
            wav_out.setframerate(PCM_SAMPLE_RATE)
            wav_out.writeframes(pcm)
        return output.getvalue()

    def _merge_wav_chunks(self, audio_chunks: list[bytes]) -> bytes:
        """Merge WAV byte chunks into one valid WAV file."""
        frames: list[bytes] = []
        expected_params: tuple[int, int, int, str] | None = None

        for chunk in audio_chunks:
            with wave.open(io.BytesIO(chunk), "rb") as wav_file:
                current_params = (
                    wav_file.getnchannels(),
                    wav_file.getsampwidth(),
                    wav_file.getframerate(),
                    wav_file.getcomptype(),
                )
                if expected_params is None:
                    expected_params = current_params
                elif current_params != expected_params:
                    raise TTSServiceError("WAV chunks have incompatible audio parameters")
                frames.append(wav_file.readframes(wav_file.getnframes()))

        if expected_params is None:
            raise TTSServiceError("No WAV chunks to merge")

        output = io.BytesIO()
        with wave.open(output, "wb") as wav_out:
            wav_out.setnchannels(expected_params[0])
            wav_out.setsampwidth(expected_params[1])
            wav_out.setframerate(expected_params[2])
            wav_out.writeframes(b"".join(frames))

        return output.getvalue()

    @staticmethod
    def wav_duration_seconds(wav_bytes: bytes) -> int:
        """Duration of a WAV file, rounded to whole seconds."""
        with wave.open(io.BytesIO(wav_bytes), "rb") as wav_file:
            rate = wav_file.getframerate()
            if not rate:
                return 0
            return round(wav_file.getnframes() / rate)

    async def _synthesize_chunk(self, text: str, voice_id: str) -> bytes:
        """Request PCM audio for one chunk.

        Raises:
            TTSServiceError: On HTTP or transport failure
        """
        url = f"{ELEVENLABS_API_BASE}/text-to-speech/{voice_id}"
        try:
            response = await self.client.post(
                url,
                params={"output_format": PCM_OUTPUT_FORMAT},
                headers={"xi-api-key": self.api_key, "Content-Type": "application/json"},
                json={"text": text, "model_id": self.model_id},
            )
        except httpx.HTTPError as e:
            raise TTSServiceError(f"ElevenLabs request failed: {e}") from e

        if response.status_code != 200:
            raise TTSServiceError(
                f"ElevenLabs error {response.status_code}: {response.text[:300]}"
            )
        if not response.content:
            raise TTSServiceError("ElevenLabs returned empty audio")
        return response.content

    async def synthesize(self, text: str, voice_id: str) -> SynthesizedAudio:
        """Synthesize narration and store it.

        Args:
            text: Narration script
            voice_id: ElevenLabs voice id

        Returns:
            SynthesizedAudio with a durable URL (or data URL without a store)

        Raises:
            TTSServiceError: If any chunk fails or the upload fails
        """
        if not self.api_key:
            raise TTSServiceError("ELEVENLABS_API_KEY is not configured")
        if not voice_id:
            raise TTSServiceError("No voice id given")

        chunks = self._split_text_chunks(text)
        if not chunks:
            raise TTSServiceError("Nothing to narrate")

        logger.info(f"Synthesizing {len(text)} chars in {len(chunks)} chunk(s) with voice {voice_id}")

        wav_chunks = []
        for i, chunk in enumerate(chunks):
            pcm = await self._synthesize_chunk(chunk, voice_id)
            logger.debug(f"Chunk {i + 1}/{len(chunks)}: {len(pcm)} bytes")
            wav_chunks.append(self._pcm_to_wav(pcm))

        wav_bytes = wav_chunks[0] if len(wav_chunks) == 1 else self._merge_wav_chunks(wav_chunks)
        duration = self.wav_duration_seconds(wav_bytes)

        if self.store is None:
            audio_url = "data:audio/wav;base64," + base64.b64encode(wav_bytes).decode("ascii")
        else:
            try:
                audio_url = await self.store.upload(wav_bytes, "audio/wav", "audio")
            except Exception as e:
                raise TTSServiceError(f"Failed to store audio: {e}") from e

        logger.info(f"Narration ready: {duration}s")
        return SynthesizedAudio(audio_url=audio_url, voice_id_used=voice_id, duration_seconds=duration)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()
