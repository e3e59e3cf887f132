"""Audio container helpers for synthesized speech."""
import logging
import struct
from io import BytesIO

from pydub import AudioSegment

logger = logging.getLogger(__name__)


def is_raw_pcm(mime_type: str) -> bool:
    """True for headerless PCM such as ``audio/L16;codec=pcm;rate=24000``."""
    main = (mime_type or "").split(";")[0].strip().lower()
    return main.startswith("audio/l") or main in ("audio/pcm", "audio/raw")


def parse_pcm_mime_type(mime_type: str) -> dict:
    """
    Parses bits per sample and rate from an audio MIME type string.

    Args:
        mime_type: e.g. "audio/L16;rate=24000" or "audio/L16;codec=pcm;rate=24000"

    Returns:
        A dictionary with "bits_per_sample" and "rate" keys.
    """
    bits_per_sample = 16
    rate = 24000

    main_part = mime_type.split(";")[0]
    if main_part.lower().startswith("audio/l"):
        try:
            bits_per_sample = int(main_part.split("/", 1)[1][1:])  # "L16" -> 16
        except (ValueError, IndexError):
            pass

    for param in mime_type.split(";")[1:]:
        param = param.strip()
        if param.lower().startswith("rate="):
            try:
                rate = int(param.split("=", 1)[1])
            except (ValueError, IndexError):
                pass

    return {"bits_per_sample": bits_per_sample, "rate": rate}


def pcm_to_wav(audio_data: bytes, mime_type: str, channels: int = 1) -> bytes:
    """Prefix raw little-endian PCM with a 44-byte WAV header."""
    parameters = parse_pcm_mime_type(mime_type)
    bits_per_sample = parameters["bits_per_sample"]
    sample_rate = parameters["rate"]
    data_size = len(audio_data)
    block_align = channels * (bits_per_sample // 8)
    byte_rate = sample_rate * block_align

    header = struct.pack(
        "<4sI4s4sIHHIIHH4sI",
        b"RIFF",
        36 + data_size,   # ChunkSize (total file size - 8 bytes)
        b"WAVE",
        b"fmt ",
        16,               # PCM fmt chunk size
        1,                # AudioFormat PCM
        channels,
        sample_rate,
        byte_rate,
        block_align,
        bits_per_sample,
        b"data",
        data_size,
    )
    return header + audio_data


def wav_to_mp3(wav_bytes: bytes, bitrate: str = "128k") -> bytes:
    """
    Convert WAV audio bytes to MP3. Requires ffmpeg on PATH.

    Raises:
        ValueError: conversion failed or produced an empty file
    """
    try:
        audio = AudioSegment.from_wav(BytesIO(wav_bytes))
        if len(audio) == 0:
            raise ValueError("Generated audio is empty")
        out = BytesIO()
        audio.export(out, format="mp3", bitrate=bitrate)
        mp3_data = out.getvalue()
    except FileNotFoundError as e:
        logger.error(f"ffmpeg not found. Please install ffmpeg: {e}")
        raise ValueError("Audio conversion requires ffmpeg.")
    except ValueError:
        raise
    except Exception as e:
        logger.error(f"Error converting WAV to MP3: {e}", exc_info=True)
        raise ValueError("Failed to convert audio format.")

    logger.info(f"MP3 conversion: {len(wav_bytes)} WAV bytes -> {len(mp3_data)} MP3 bytes")
    return mp3_data
