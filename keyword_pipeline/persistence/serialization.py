"""Checkpoint state encoding, integrity hashing and recovery metadata."""

import base64
import binascii
import hashlib
import json
import zlib
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from keyword_pipeline.core.exceptions import CheckpointSerializationError

ENCODING_JSON = "json"
ENCODING_ZLIB_BASE64 = "zlib+base64"

CHECKPOINT_TYPE_STAGE = "stage"
CHECKPOINT_TYPE_BATCH = "batch"
CHECKPOINT_TYPE_FAILURE = "failure"

RECOVERABLE_STAGES = frozenset(
    {"cleaning", "deduplication", "clustering", "scoring", "completed"}
)

# Keys a checkpoint state must carry to continue after the named stage
_REQUIRED_STATE_KEYS = {
    "cleaning": ("cleaned",),
    "deduplication": ("unique",),
    "clustering": ("unique", "clusters"),
    "scoring": ("unique", "clusters"),
    "completed": ("unique", "clusters"),
}


@dataclass(frozen=True)
class EncodedState:
    """Serialized checkpoint state and how it was encoded."""

    payload: str
    encoding: str


def encode_state(state: Mapping[str, Any], compression_threshold: int = 1000) -> EncodedState:
    """JSON-encode state, compressing payloads longer than the threshold."""
    try:
        text = json.dumps(state, separators=(",", ":"))
    except (TypeError, ValueError) as exc:
        raise CheckpointSerializationError(str(exc)) from exc

    if len(text) <= compression_threshold:
        return EncodedState(payload=text, encoding=ENCODING_JSON)

    compressed = zlib.compress(text.encode("utf-8"))
    return EncodedState(
        payload=base64.b64encode(compressed).decode("ascii"),
        encoding=ENCODING_ZLIB_BASE64,
    )


def decode_state(payload: str, encoding: str) -> dict[str, Any]:
    """Inverse of encode_state."""
    try:
        if encoding == ENCODING_ZLIB_BASE64:
            raw = zlib.decompress(base64.b64decode(payload, validate=True))
            text = raw.decode("utf-8")
        elif encoding == ENCODING_JSON:
            text = payload
        else:
            raise CheckpointSerializationError(f"unknown state encoding '{encoding}'")
        state = json.loads(text)
    except (binascii.Error, zlib.error, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise CheckpointSerializationError(str(exc)) from exc

    if not isinstance(state, dict):
        raise CheckpointSerializationError("checkpoint state is not an object")
    return state


def compute_validation_hash(
    stage_name: str,
    batch_number: int,
    keywords_processed: int,
    serialized_state: str,
) -> str:
    """MD5 over the identifying fields and the serialized state."""
    canonical = json.dumps(
        {
            "stage_name": stage_name,
            "batch_number": batch_number,
            "keywords_processed": keywords_processed,
            "serialized_state": serialized_state,
        },
        sort_keys=True,
    )
    return hashlib.md5(canonical.encode("utf-8"), usedforsecurity=False).hexdigest()


def is_recoverable(checkpoint_type: str, stage_name: str, state: Mapping[str, Any]) -> bool:
    if checkpoint_type == CHECKPOINT_TYPE_FAILURE:
        return False
    if stage_name not in RECOVERABLE_STAGES:
        return False
    return all(key in state for key in _REQUIRED_STATE_KEYS.get(stage_name, ()))


def recovery_instructions(
    checkpoint_type: str,
    stage_name: str,
    batch_number: int,
    keywords_processed: int,
) -> list[str]:
    """Human-readable next steps for an operator inspecting a checkpoint."""
    if checkpoint_type == CHECKPOINT_TYPE_FAILURE:
        instructions = [
            f"Processing failed during {stage_name}",
            "Resume continues from the last recoverable checkpoint",
        ]
    elif stage_name == "cleaning":
        instructions = [
            "Resume from data cleaning stage",
            f"Continue processing from batch {batch_number + 1}",
        ]
    elif stage_name == "deduplication":
        instructions = [
            "Resume from clustering stage",
            "Deduplicated data ready for clustering",
        ]
    elif stage_name == "clustering":
        instructions = [
            "Resume from priority scoring stage",
            "Clusters available for scoring",
        ]
    elif stage_name == "scoring":
        instructions = [
            "Resume from finalizing stage",
            "Scored keywords available",
        ]
    elif stage_name == "completed":
        instructions = [
            "Processing completed successfully",
            "All results available",
        ]
    else:
        instructions = [f"Resume from {stage_name} stage"]

    instructions.append(f"Progress: {keywords_processed} keywords processed")
    return instructions
