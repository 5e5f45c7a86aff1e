"""
Content-addressable path generation for artifact storage.
All paths are relative to ARTIFACT_ROOT.
"""

import hashlib
from pathlib import Path


def doc_hash(file_bytes: bytes) -> str:
    """SHA-256 hash of file content."""
    return hashlib.sha256(file_bytes).hexdigest()


def raw_document_path(project_id: str, doc_id: str, file_name: str) -> str:
    """Path for an uploaded bid document."""
    return f"{project_id}/{doc_id}/raw/{Path(file_name).name}"


def training_export_path(export_id: str) -> str:
    """Path for a generated fine-tuning JSONL file."""
    return f"exports/{export_id}.jsonl"


def is_remote_uri(uri: str) -> bool:
    return uri.startswith("http://") or uri.startswith("https://")


def ensure_parent_dirs(artifact_root: str, relative_path: str) -> Path:
    """Create parent directories and return the full absolute path."""
    full_path = Path(artifact_root) / relative_path
    full_path.parent.mkdir(parents=True, exist_ok=True)
    return full_path
