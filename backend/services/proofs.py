import logging
from pathlib import Path
from typing import Iterable
from urllib.parse import unquote, urlparse

from backend.config import PROOFS_DIR

logger = logging.getLogger(__name__)


def resolve_local_proof(ref: str, proofs_dir: Path | None = None) -> Path | None:
    """
    Map a proof ref to a file under the proofs directory.

    Accepts `file://` URIs and relative paths. Anything else (remote URLs,
    paths escaping the directory) is owned by external storage.
    """
    root = (proofs_dir or PROOFS_DIR).resolve()
    raw = (ref or "").strip()
    if not raw:
        return None

    parsed = urlparse(raw)
    if parsed.scheme == "file":
        candidate = Path(unquote(parsed.path))
    elif parsed.scheme:
        return None
    else:
        candidate = Path(raw)
        if not candidate.is_absolute():
            candidate = root / candidate

    resolved = candidate.resolve()
    if resolved != root and root not in resolved.parents:
        return None
    return resolved


def purge_proof_artifacts(refs: Iterable[str], proofs_dir: Path | None = None) -> dict[str, int]:
    removed = 0
    delegated = 0
    failed = 0
    for ref in refs:
        path = resolve_local_proof(ref, proofs_dir)
        if path is None:
            delegated += 1
            logger.info("Proof %s is not stored locally; leaving cleanup to its storage", ref)
            continue
        if not path.is_file():
            continue
        try:
            path.unlink()
        except OSError:
            failed += 1
            logger.warning("Could not remove proof file %s", path, exc_info=True)
            continue
        removed += 1
    logger.info("Purged %s proof file(s), %s delegated, %s failed", removed, delegated, failed)
    return {"removed": removed, "delegated": delegated, "failed": failed}
