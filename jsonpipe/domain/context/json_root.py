from typing import Any, Dict, Iterable, List, Mapping, Optional
import structlog

from jsonpipe.domain.models.context_state import Entry

logger = structlog.get_logger(__name__)


def build_json_root(entries: Optional[Iterable[Any]]) -> List[Dict[str, Any]]:
    """Ordered entry payloads forming the array root for path queries"""

    root = []
    for entry in entries or []:
        if isinstance(entry, Entry):
            root.append(entry.payload)
        elif isinstance(entry, Mapping):
            root.append(dict(entry))

    logger.debug("Built JSON root", length=len(root))
    return root
