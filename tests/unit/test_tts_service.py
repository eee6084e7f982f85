"""Unit tests for TTSService chunking, WAV handling and the ElevenLabs client."""

import base64
import io
import json
import wave

import httpx
import pytest

from services.tts_service import (
    PCM_SAMPLE_RATE,
    TTSService,
    TTSServiceError,
    voice_name,
)


def _make_wav_bytes(frame_count: int, framerate: int = 16000) -> bytes:
    """Create a simple silent mono WAV payload."""
    output = io.BytesIO()
    with wave.open(output, "wb") as wav_file:
        wav_file.setnchannels(1)
        wav_file.setsampwidth(2)
        wav_file.setframerate(framerate)
        wav_file.writeframes(b"\x00\x00" * frame_count)
    return output.getvalue()


def _is_wav(data: bytes) -> bool:
    return data[:4] == b"RIFF" and data[8:12] == b"WAVE"


def _pcm_seconds(seconds: float) -> bytes:
    return b"\x00\x00" * int(PCM_SAMPLE_RATE * seconds)


class RecordingStore:
    def __init__(self):
        self.uploads: list[tuple[bytes, str, str]] = []

    async def upload(self, data, content_type, prefix):
        self.uploads.append((data, content_type, prefix))
        return f"https://media.test/{prefix}/narration.wav"


def _service(handler, store=None, chunk_max_chars=2500) -> tuple[TTSService, list[httpx.Request]]:
    requests: list[httpx.Request] = []

    def record(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(record))
    service = TTSService(
        api_key="eleven-key",
        store=store,
        client=client,
        chunk_max_chars=chunk_max_chars,
    )
    return service, requests


@pytest.mark.unit
@pytest.mark.asyncio
async def test_split_text_chunks_preserves_text():
    """Long text should be chunked and reconstruct to the same normalized text."""
    service = TTSService(api_key="k")
    try:
        text = (
            "This is a very long sentence for testing chunk behavior. "
            "It should be split into multiple chunks without dropping words. "
            "The resulting chunks should still preserve order and readability."
        )

        chunks = service._split_text_chunks(text, max_chars=60)

        assert len(chunks) > 1
        assert all(len(chunk) <= 60 for chunk in chunks)
        assert " ".join(chunks) == " ".join(text.split())
    finally:
        await service.close()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_short_text_keeps_paragraph_breaks():
    service = TTSService(api_key="k")
    try:
        chunks = service._split_text_chunks("Let us pray.\n\n  Lord,   hear us.\n\n\nAmen.")
        assert chunks == ["Let us pray.\n\nLord, hear us.\n\nAmen."]
    finally:
        await service.close()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_merge_wav_chunks():
    """WAV chunks should merge into one valid WAV stream."""
    service = TTSService(api_key="k")
    try:
        merged = service._merge_wav_chunks([_make_wav_bytes(4000), _make_wav_bytes(6000)])

        assert _is_wav(merged)
        with wave.open(io.BytesIO(merged), "rb") as wav_file:
            assert wav_file.getnframes() == 10000
            assert wav_file.getframerate() == 16000
    finally:
        await service.close()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_merge_rejects_mismatched_rates():
    service = TTSService(api_key="k")
    try:
        with pytest.raises(TTSServiceError):
            service._merge_wav_chunks([_make_wav_bytes(100, 16000), _make_wav_bytes(100, 24000)])
    finally:
        await service.close()


@pytest.mark.unit
def test_wav_duration_rounds_to_seconds():
    assert TTSService.wav_duration_seconds(_make_wav_bytes(16000 * 3 + 9000)) == 4


@pytest.mark.unit
def test_voice_catalogue():
    assert voice_name("7i7dgyCkKt4c16dLtwT3") == "David - Epic Trailer"
    assert voice_name("unknown") is None
    assert voice_name(None) is None


@pytest.mark.unit
@pytest.mark.asyncio
class TestSynthesize:
    async def test_uploads_wav_to_store(self):
        store = RecordingStore()
        service, requests = _service(lambda r: httpx.Response(200, content=_pcm_seconds(2)), store)
        try:
            audio = await service.synthesize("Let us pray.", "voice-1")
        finally:
            await service.close()

        assert audio.audio_url == "https://media.test/audio/narration.wav"
        assert audio.voice_id_used == "voice-1"
        assert audio.duration_seconds == 2

        request = requests[0]
        assert request.url.path == "/v1/text-to-speech/voice-1"
        assert request.url.params["output_format"] == "pcm_24000"
        assert request.headers["xi-api-key"] == "eleven-key"
        assert json.loads(request.content) == {
            "text": "Let us pray.",
            "model_id": "eleven_multilingual_v2",
        }

        data, content_type, prefix = store.uploads[0]
        assert (content_type, prefix) == ("audio/wav", "audio")
        assert _is_wav(data)

    async def test_long_text_is_chunked_and_merged(self):
        store = RecordingStore()
        service, requests = _service(
            lambda r: httpx.Response(200, content=_pcm_seconds(1.5)),
            store,
            chunk_max_chars=40,
        )
        text = "First sentence of the prayer. Second sentence of the prayer. Third one."
        try:
            audio = await service.synthesize(text, "voice-1")
        finally:
            await service.close()

        assert len(requests) == 3
        assert audio.duration_seconds == 4  # 4.5s rounds to even
        assert len(store.uploads) == 1

    async def test_without_store_returns_data_url(self):
        service, _ = _service(lambda r: httpx.Response(200, content=_pcm_seconds(1)))
        try:
            audio = await service.synthesize("Amen.", "voice-1")
        finally:
            await service.close()

        assert audio.audio_url.startswith("data:audio/wav;base64,")
        wav = base64.b64decode(audio.audio_url.split(",", 1)[1])
        assert _is_wav(wav)

    async def test_http_error_raises(self):
        service, _ = _service(lambda r: httpx.Response(401, json={"detail": "invalid api key"}))
        try:
            with pytest.raises(TTSServiceError, match="401"):
                await service.synthesize("Amen.", "voice-1")
        finally:
            await service.close()

    async def test_transport_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        service, _ = _service(handler)
        try:
            with pytest.raises(TTSServiceError):
                await service.synthesize("Amen.", "voice-1")
        finally:
            await service.close()

    async def test_empty_text_raises(self):
        service, requests = _service(lambda r: httpx.Response(200, content=b"\x00\x00"))
        try:
            with pytest.raises(TTSServiceError):
                await service.synthesize("   ", "voice-1")
        finally:
            await service.close()
        assert requests == []
