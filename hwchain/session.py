"""Entry points for the submission UI.

The UI holds a ``ChainHandle`` for the submission being worked on and
calls ``record`` for every lifecycle action.  ``finalize`` seals it,
``save`` writes it to the completed-homework directory, and ``verify``
checks a saved file during teacher review.

Errors are raised as ``ChainError`` / ``StoreError`` subclasses; mapping
them to messages or exit codes is up to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

from hwchain.chain.builder import ChainBuilder, Clock, SealedChain
from hwchain.chain.events import EventKind, SubmissionIdentity
from hwchain.config import DEFAULT_BASE_DIR
from hwchain.store import submission_store
from hwchain.verify.report import VerificationReport
from hwchain.verify import verifier


@dataclass
class ChainHandle:
    """Owns one submission's chain for the length of a sitting."""

    chain: ChainBuilder

    @property
    def identity(self) -> SubmissionIdentity:
        return self.chain.identity

    @property
    def sealed(self) -> Optional[SealedChain]:
        return self.chain.sealed


def start(
    identity: Union[SubmissionIdentity, Dict[str, str]],
    clock: Optional[Clock] = None,
    timestamp: Optional[int] = None,
) -> ChainHandle:
    """Open a new submission chain (records the ``start`` event)."""
    return ChainHandle(ChainBuilder.start(identity, timestamp=timestamp, clock=clock))


def record(
    handle: ChainHandle,
    kind: Union[EventKind, str],
    payload: Any = None,
    timestamp: Optional[int] = None,
) -> None:
    """Record one action.  Without *timestamp* the handle's clock is read."""
    handle.chain.append(kind, payload, timestamp)


def finalize(handle: ChainHandle, timestamp: Optional[int] = None) -> str:
    """Seal the chain and return its hex final hash."""
    return handle.chain.finalize(timestamp).final_hash


def save(handle: ChainHandle, base_dir: Union[str, Path] = DEFAULT_BASE_DIR) -> Path:
    """Persist the chain under *base_dir*, retrying transient failures."""
    path = submission_store.submission_path(base_dir, handle.identity)
    return submission_store.persist_with_retry(handle.chain, path)


def verify(source: Any, require_finalized: bool = False) -> VerificationReport:
    """Verify a saved submission (path, bytes or JSON text) or an in-memory chain."""
    if isinstance(source, ChainHandle):
        source = source.chain
    return verifier.verify(source, require_finalized=require_finalized)
