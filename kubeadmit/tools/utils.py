"""Small shared utilities for kubeadmit.

Helpers for console printing, JSON / YAML I/O and timestamp formatting.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml
from rich.console import Console

logger = logging.getLogger("kubeadmit")

console = Console(stderr=True)


def rprint(msg: str, *, style: str = "") -> None:
    """Print with Rich styling to stderr."""
    console.print(msg, style=style)


# ---------------------------------------------------------------------------
# JSON helpers
# ---------------------------------------------------------------------------

def write_json(data: Any, path: str | Path) -> Path:
    """Write *data* as pretty-printed JSON and return the resolved path."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with open(p, "w", encoding="utf-8") as fh:
        json.dump(data, fh, indent=2, default=str)
    return p


# ---------------------------------------------------------------------------
# YAML / manifest files
# ---------------------------------------------------------------------------

def load_documents(path: str | Path) -> list[Any]:
    """Load every document from a YAML or JSON file.

    Multi-document YAML (``---`` separated) yields one entry per document;
    a top-level list, or a ``kind: List`` object, is flattened into its
    items.  Empty documents are dropped.  Unparseable input raises
    ``ValueError``.
    """
    p = Path(path)
    text = p.read_text(encoding="utf-8-sig")
    if p.suffix.lower() == ".json":
        raw_docs = [json.loads(text)]
    else:
        try:
            raw_docs = list(yaml.safe_load_all(text))
        except yaml.YAMLError as exc:
            raise ValueError(f"{p}: invalid YAML: {exc}") from exc

    docs: list[Any] = []
    for doc in raw_docs:
        if doc is None:
            continue
        if isinstance(doc, list):
            docs.extend(d for d in doc if d is not None)
        elif isinstance(doc, dict) and doc.get("kind") == "List" and isinstance(doc.get("items"), list):
            docs.extend(doc["items"])
        else:
            docs.append(doc)
    logger.debug("Loaded %d document(s) from %s", len(docs), p)
    return docs


# ---------------------------------------------------------------------------
# Timestamp helpers
# ---------------------------------------------------------------------------

def utcnow_iso() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")
