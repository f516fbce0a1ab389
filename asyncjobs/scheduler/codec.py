"""
State Codec.

Job state is an arbitrary string-keyed map. The storage layer caps the size
of a single field, so the serialized map is split into ordered chunks:

    encode: {"a": "1"} -> '{"a": "1"}' -> [chunk 1, chunk 2, ...]
    decode: chunks sorted by chunk_number -> joined -> json.loads

An empty map encodes to no chunks at all.
"""

import json
from typing import Iterable

from .config import DEFAULT_CHUNK_SIZE
from .entities import Job, JobStateChunk
from .errors import DecodeError, InvalidOperationError


class StateCodec:
    """Encodes/decodes job state maps into size-bounded chunks."""

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE):
        if chunk_size < 1:
            raise InvalidOperationError(f"chunk_size must be >= 1, got {chunk_size}")
        self.chunk_size = chunk_size

    def encode(self, job: Job, state: dict) -> list[JobStateChunk]:
        """
        Serialize `state` and split it into chunks numbered from 1.

        Args:
            job: Owner of the chunks (job_id may still be None for unsaved jobs)
            state: String-keyed map to serialize

        Returns:
            Chunks in order; empty list for an empty map
        """
        if not state:
            return []

        serialized = json.dumps(state)
        size = self.chunk_size

        return [
            JobStateChunk(
                job_id=job.job_id,
                chunk_number=number,
                content=serialized[offset:offset + size],
            )
            for number, offset in enumerate(range(0, len(serialized), size), start=1)
        ]

    def decode(self, chunks: Iterable[JobStateChunk]) -> dict:
        """
        Reassemble a state map from its chunks.

        Raises:
            DecodeError: If there are no chunks or the content is not a JSON object
        """
        ordered = sorted(chunks, key=lambda chunk: chunk.chunk_number)
        if not ordered:
            raise DecodeError("Cannot decode job state from an empty chunk list")

        serialized = "".join(chunk.content for chunk in ordered)

        try:
            state = json.loads(serialized)
        except json.JSONDecodeError as e:
            raise DecodeError(f"Job state is not valid JSON: {e}") from e

        if not isinstance(state, dict):
            raise DecodeError(
                f"Job state must decode to an object, got {type(state).__name__}"
            )

        return state
