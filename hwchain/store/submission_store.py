"""Durable storage for submission chains.

One JSON file per submission, at
``<base>/homework/completed/submission_<assignment>_<student>.json``.

Writes are atomic: the chain is written to a temporary file in the target
directory, fsynced, then moved over the final path with ``os.replace``.
A reader sees either the old file or the new one, never a partial write.
Concurrent writers to the same path are a configuration error; an
advisory ``<path>.lock`` file turns them into ``StoreLocked``.

Loading only checks structure.  Whether the hashes add up is the
verifier's business.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from pydantic import BaseModel, ConfigDict, StrictStr, ValidationError

from hwchain.chain.builder import ChainBuilder, SealedChain
from hwchain.chain.events import Event, SubmissionIdentity
from hwchain.config import (
    COMPLETED_SUBDIR,
    FORMAT_VERSION,
    HASH_ALGORITHM,
    PERSIST_BACKOFF_SECONDS,
    PERSIST_MAX_ATTEMPTS,
    SUBMISSION_PREFIX,
)
from hwchain.errors import MalformedPersistedData, StoreError, StoreIOError, StoreLocked

logger = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]
Chain = Union[ChainBuilder, SealedChain]


class LoadedChain(BaseModel):
    """A chain as read back from disk: recorded fields, nothing recomputed."""

    model_config = ConfigDict(frozen=True)

    format_version: StrictStr
    hash_algorithm: StrictStr
    assignment_id: StrictStr
    student_id: StrictStr
    events: List[Event]
    final_hash: Optional[StrictStr] = None

    @property
    def identity(self) -> SubmissionIdentity:
        # recorded values as-is; a tampered id must still reach the verifier
        return SubmissionIdentity.model_construct(
            assignment_id=self.assignment_id, student_id=self.student_id
        )

    @property
    def finalized(self) -> bool:
        return self.final_hash is not None


@dataclass
class SubmissionSummary:
    assignment_id: str
    student_id: str
    event_count: int
    finalized: bool
    path: Path


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def chain_to_dict(chain: Chain) -> Dict[str, Any]:
    """Persisted representation of an in-progress or sealed chain."""
    identity = chain.identity
    return {
        "format_version": FORMAT_VERSION,
        "hash_algorithm": HASH_ALGORITHM,
        "assignment_id": identity.assignment_id,
        "student_id": identity.student_id,
        "events": [e.to_dict() for e in chain.events()],
        "final_hash": chain.final_hash,
    }


def dumps(chain: Chain) -> bytes:
    return (json.dumps(chain_to_dict(chain), indent=2, ensure_ascii=False) + "\n").encode("utf-8")


def loads(data: Union[bytes, str]) -> LoadedChain:
    """Parse a persisted chain.  Raises ``MalformedPersistedData``."""
    try:
        raw = json.loads(data)
    except (UnicodeDecodeError, ValueError) as exc:
        raise MalformedPersistedData(f"not valid JSON: {exc}") from exc
    except RecursionError:
        raise MalformedPersistedData("JSON nested too deeply") from None
    if not isinstance(raw, dict):
        raise MalformedPersistedData("top-level value must be an object")

    try:
        loaded = LoadedChain.model_validate(raw)
    except ValidationError as exc:
        raise MalformedPersistedData(f"invalid submission structure: {exc}") from exc
    except RecursionError:
        raise MalformedPersistedData("submission nested too deeply") from None

    if loaded.format_version != FORMAT_VERSION:
        raise MalformedPersistedData(f"unsupported format_version {loaded.format_version!r}")
    if loaded.hash_algorithm != HASH_ALGORITHM:
        raise MalformedPersistedData(f"unsupported hash_algorithm {loaded.hash_algorithm!r}")
    return loaded


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------


def completed_dir(base_dir: PathLike) -> Path:
    return Path(base_dir) / COMPLETED_SUBDIR


def submission_path(base_dir: PathLike, identity: SubmissionIdentity) -> Path:
    """Where the submission for *identity* lives under *base_dir*."""
    name = f"{SUBMISSION_PREFIX}{identity.assignment_id}_{identity.student_id}.json"
    return completed_dir(base_dir) / name


# ---------------------------------------------------------------------------
# Persist / load
# ---------------------------------------------------------------------------


@contextlib.contextmanager
def _path_lock(path: Path) -> Iterator[None]:
    lock_path = path.with_name(path.name + ".lock")
    try:
        fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
    except FileExistsError:
        raise StoreLocked(f"{path} is locked by another writer ({lock_path} exists)") from None
    except OSError as exc:
        raise StoreIOError(f"cannot create lock {lock_path}: {exc}") from exc
    try:
        try:
            os.write(fd, str(os.getpid()).encode())
        except OSError as exc:
            raise StoreIOError(f"cannot write lock {lock_path}: {exc}") from exc
        finally:
            os.close(fd)
        yield
    finally:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(lock_path)


def _fsync_dir(directory: Path) -> None:
    if not hasattr(os, "O_DIRECTORY"):
        return
    fd = os.open(directory, os.O_RDONLY | os.O_DIRECTORY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def persist(chain: Chain, path: PathLike) -> Path:
    """Atomically write *chain* to *path*.

    Raises ``StoreIOError`` on storage failure (the previous file, if any,
    is left intact) and ``StoreLocked`` if another writer holds the path.
    """
    target = Path(path)
    data = dumps(chain)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise StoreIOError(f"cannot create {target.parent}: {exc}") from exc

    with _path_lock(target):
        tmp_name = None
        try:
            fd, tmp_name = tempfile.mkstemp(
                dir=target.parent, prefix=f".{target.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, target)
            tmp_name = None
            _fsync_dir(target.parent)
        except OSError as exc:
            raise StoreIOError(f"failed to write {target}: {exc}") from exc
        finally:
            if tmp_name is not None:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_name)

    logger.info("persisted %d events to %s", len(chain), target)
    return target


def persist_with_retry(
    chain: Chain,
    path: PathLike,
    attempts: int = PERSIST_MAX_ATTEMPTS,
    backoff: float = PERSIST_BACKOFF_SECONDS,
) -> Path:
    """``persist`` with bounded retries on ``StoreIOError``.

    The delay doubles after every failed attempt.  ``StoreLocked`` is not
    retried.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")
    for attempt in range(1, attempts + 1):
        try:
            return persist(chain, path)
        except StoreIOError as exc:
            if attempt == attempts:
                logger.error("giving up on %s after %d attempts: %s", path, attempts, exc)
                raise
            delay = backoff * (2 ** (attempt - 1))
            logger.warning(
                "persist attempt %d/%d for %s failed (%s), retrying in %.3fs",
                attempt, attempts, path, exc, delay,
            )
            time.sleep(delay)
    raise AssertionError("unreachable")


def load(path: PathLike) -> LoadedChain:
    """Read a persisted chain without verifying it.

    Raises ``StoreIOError`` if the file cannot be read and
    ``MalformedPersistedData`` if its structure is invalid.
    """
    try:
        data = Path(path).read_bytes()
    except OSError as exc:
        raise StoreIOError(f"cannot read {path}: {exc}") from exc
    return loads(data)


def list_submissions(base_dir: PathLike) -> List[SubmissionSummary]:
    """Summarise every submission file under *base_dir*.

    Unreadable or malformed files are logged and skipped.
    """
    directory = completed_dir(base_dir)
    if not directory.is_dir():
        return []

    out: List[SubmissionSummary] = []
    for path in sorted(directory.glob(f"{SUBMISSION_PREFIX}*.json")):
        if not path.is_file():
            continue
        try:
            loaded = load(path)
        except StoreError as exc:
            logger.warning("skipping %s: %s", path.name, exc)
            continue
        out.append(
            SubmissionSummary(
                assignment_id=loaded.assignment_id,
                student_id=loaded.student_id,
                event_count=len(loaded.events),
                finalized=loaded.finalized,
                path=path,
            )
        )
    return out
