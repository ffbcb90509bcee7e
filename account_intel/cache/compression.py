"""
Cache Value Codec

Turns derived artifacts into bytes for the cache store and back.

Layout of a stored value: one marker byte naming the compression, then
the payload. Entries below the size threshold are stored as plain JSON;
larger ones go through LZ4, and the very large ones (long transcript
derived payloads) through ZSTD, where the better ratio is worth the
slower codec.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional, Tuple

import lz4.frame
import zstandard


logger = logging.getLogger(__name__)


PLAIN = b"\x00"
LZ4 = b"\x01"
ZSTD = b"\x02"


@dataclass
class CompressionStats:
    algorithm: str
    original_size: int
    compressed_size: int

    @property
    def bytes_saved(self) -> int:
        return self.original_size - self.compressed_size


class CacheCompressor:
    """Marker-prefixed LZ4 / ZSTD compression above a size threshold."""

    def __init__(
        self,
        enabled: bool = True,
        threshold: int = 1024,
        zstd_threshold: int = 100 * 1024,
    ):
        self.enabled = enabled
        self.threshold = threshold
        self.zstd_threshold = zstd_threshold
        self._zstd_in = zstandard.ZstdCompressor(level=3)
        self._zstd_out = zstandard.ZstdDecompressor()

    def compress(self, data: bytes) -> Tuple[bytes, Optional[CompressionStats]]:
        """
        Prefix and possibly compress `data`.

        Returns the stored bytes and, when compression was applied, its
        stats. Output that would not shrink is stored plain.
        """
        if not self.enabled or len(data) < self.threshold:
            return PLAIN + data, None

        if len(data) >= self.zstd_threshold:
            marker, algorithm, packed = ZSTD, "zstd", self._zstd_in.compress(data)
        else:
            marker, algorithm, packed = LZ4, "lz4", lz4.frame.compress(data)

        stored = marker + packed
        if len(stored) >= len(data) + 1:
            return PLAIN + data, None
        return stored, CompressionStats(algorithm, len(data), len(stored))

    def decompress(self, data: bytes) -> bytes:
        if not data:
            return data

        marker, payload = data[:1], data[1:]
        if marker == PLAIN:
            return payload
        if marker == LZ4:
            return lz4.frame.decompress(payload)
        if marker == ZSTD:
            return self._zstd_out.decompress(payload)

        logger.warning(f"Cache entry with unknown marker {marker!r}, reading as-is")
        return data


def _json_default(obj: Any) -> Any:
    if hasattr(obj, "isoformat"):
        return obj.isoformat()
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    raise TypeError(f"Cannot cache value of type {type(obj).__name__}")


def serialize_value(value: Any) -> bytes:
    """JSON bytes; dates become ISO strings, artifacts go through to_dict()."""
    return json.dumps(value, default=_json_default, ensure_ascii=False).encode("utf-8")


def deserialize_value(data: bytes) -> Any:
    return json.loads(data.decode("utf-8")) if data else None


class ValueCodec:
    """Serialize + compress on the way in, decompress + parse on the way out."""

    def __init__(self, compressor: Optional[CacheCompressor] = None):
        self.compressor = compressor or CacheCompressor()
        self.bytes_saved = 0

    def encode(self, value: Any) -> bytes:
        stored, stats = self.compressor.compress(serialize_value(value))
        if stats is not None:
            self.bytes_saved += stats.bytes_saved
        return stored

    def decode(self, data: bytes) -> Any:
        """Raises ValueError for anything that cannot be read back."""
        try:
            raw = self.compressor.decompress(data)
        except (RuntimeError, zstandard.ZstdError) as e:
            raise ValueError(f"Cache entry could not be decompressed: {e}") from e
        return deserialize_value(raw)
