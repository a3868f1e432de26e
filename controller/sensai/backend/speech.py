"""Speech synthesis providers.

Two interchangeable backends return an :class:`AudioClip`:

* Gemini TTS answers with base64 encoded signed 16-bit PCM (24 kHz mono),
  decoded here into a float32 waveform in [-1, 1].
* ElevenLabs answers with a ready-to-play ``audio/mpeg`` blob.
"""
from __future__ import annotations

import base64
import binascii
import logging
import re
from dataclasses import dataclass
from typing import Optional

import httpx
import numpy as np

from ..config import Settings

logger = logging.getLogger(__name__)

PCM_ENCODING = "pcm_f32le"


@dataclass(frozen=True)
class AudioClip:
    """Synthesized utterance ready for the audio output."""

    encoding: str
    sample_rate: int = 0
    samples: Optional[np.ndarray] = None
    data: bytes = b""
    bitrate_kbps: int = 0

    @property
    def duration_seconds(self) -> float:
        if self.samples is not None and self.sample_rate:
            return len(self.samples) / float(self.sample_rate)
        if self.data and self.bitrate_kbps:
            return len(self.data) * 8 / (self.bitrate_kbps * 1000.0)
        return 0.0

    def to_bytes(self) -> bytes:
        """Wire bytes for the UI: float32 little-endian PCM or the compressed blob."""
        if self.samples is not None:
            return self.samples.astype("<f4").tobytes()
        return self.data


def decode_pcm16(audio_b64: str) -> np.ndarray:
    """Base64 signed 16-bit little-endian PCM -> float32 samples in [-1, 1]."""

    raw = base64.b64decode(audio_b64)
    if len(raw) % 2:
        raw = raw[:-1]
    pcm16 = np.frombuffer(raw, dtype="<i2")
    return pcm16.astype(np.float32) / 32768.0


_RATE_RE = re.compile(r"rate=(\d+)")


def _sample_rate_from_mime(mime_type: str, default: int) -> int:
    match = _RATE_RE.search(mime_type or "")
    return int(match.group(1)) if match else default


class SpeechSynthesizer:
    """Base class: ``synthesize`` returns a clip, or None when synthesis failed."""

    name = "base"

    async def synthesize(self, text: str) -> Optional[AudioClip]:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


class GeminiSpeechSynthesizer(SpeechSynthesizer):
    name = "gemini"

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None) -> None:
        self.settings = settings
        self._client = client or httpx.AsyncClient(timeout=settings.http_timeout_seconds)

    async def synthesize(self, text: str) -> Optional[AudioClip]:
        cfg = self.settings.speech
        url = f"{cfg.gemini_url}/models/{cfg.gemini_model}:generateContent"
        payload = {
            "contents": [{"parts": [{"text": f"{cfg.voice_prompt}{text}"}]}],
            "generationConfig": {
                "responseModalities": ["AUDIO"],
                "speechConfig": {"voiceConfig": {"prebuiltVoiceConfig": {"voiceName": cfg.gemini_voice}}},
            },
        }
        try:
            response = await self._client.post(url, params={"key": cfg.gemini_api_key}, json=payload)
            response.raise_for_status()
            part = response.json()["candidates"][0]["content"]["parts"][0]
            inline = part["inlineData"]
            mime_type = inline.get("mimeType", "")
            if not mime_type.startswith("audio/"):
                logger.error("gemini.tts: unexpected mime type %r", mime_type)
                return None
            samples = decode_pcm16(inline["data"])
            return AudioClip(
                encoding=PCM_ENCODING,
                sample_rate=_sample_rate_from_mime(mime_type, cfg.sample_rate),
                samples=samples,
            )
        except httpx.TimeoutException:
            logger.error("gemini.tts: request timeout")
        except httpx.HTTPStatusError as e:
            logger.error("gemini.tts: HTTP %d", e.response.status_code)
        except httpx.HTTPError as e:
            logger.error("gemini.tts: network error - %s", e)
        except (KeyError, IndexError, TypeError, ValueError, binascii.Error) as e:
            logger.error("gemini.tts: invalid response format - %s", e)
        return None

    async def aclose(self) -> None:
        try:
            await self._client.aclose()
        except Exception as e:
            logger.warning("Error closing Gemini HTTP client: %s", e)


class ElevenLabsSpeechSynthesizer(SpeechSynthesizer):
    name = "elevenlabs"

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None) -> None:
        self.settings = settings
        self._client = client or httpx.AsyncClient(timeout=settings.http_timeout_seconds)

    async def synthesize(self, text: str) -> Optional[AudioClip]:
        cfg = self.settings.speech
        url = f"{cfg.elevenlabs_url}/text-to-speech/{cfg.elevenlabs_voice_id}"
        try:
            response = await self._client.post(
                url,
                json={"text": text, "model_id": "eleven_multilingual_v2"},
                headers={"xi-api-key": cfg.elevenlabs_api_key, "Accept": "audio/mpeg"},
            )
            response.raise_for_status()
            content_type = response.headers.get("content-type", "audio/mpeg").split(";")[0].strip()
            if not content_type.startswith("audio/") or not response.content:
                logger.error("elevenlabs.tts: unexpected response (%s, %d bytes)", content_type, len(response.content))
                return None
            return AudioClip(encoding=content_type, data=response.content, bitrate_kbps=cfg.elevenlabs_bitrate_kbps)
        except httpx.TimeoutException:
            logger.error("elevenlabs.tts: request timeout")
        except httpx.HTTPStatusError as e:
            logger.error("elevenlabs.tts: HTTP %d", e.response.status_code)
        except httpx.HTTPError as e:
            logger.error("elevenlabs.tts: network error - %s", e)
        return None

    async def aclose(self) -> None:
        try:
            await self._client.aclose()
        except Exception as e:
            logger.warning("Error closing ElevenLabs HTTP client: %s", e)


def build_synthesizer(settings: Settings) -> Optional[SpeechSynthesizer]:
    """Configured provider, or None when its API key is a placeholder."""

    if not settings.speech_enabled:
        logger.warning("Speech provider %s is not configured; narration stays silent", settings.speech.provider)
        return None
    if settings.speech.provider == "elevenlabs":
        return ElevenLabsSpeechSynthesizer(settings)
    return GeminiSpeechSynthesizer(settings)


__all__ = [
    "AudioClip",
    "ElevenLabsSpeechSynthesizer",
    "GeminiSpeechSynthesizer",
    "PCM_ENCODING",
    "SpeechSynthesizer",
    "build_synthesizer",
    "decode_pcm16",
]
