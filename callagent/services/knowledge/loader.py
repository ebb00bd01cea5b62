"""Knowledge base seed file loader."""
import logging
from pathlib import Path
from typing import List, Union

import yaml

from callagent.core.errors import InvalidSpec
from callagent.services.knowledge.index import KnowledgeIndex
from callagent.services.knowledge.models import KnowledgeBase

logger = logging.getLogger(__name__)


def load_seed_file(index: KnowledgeIndex, seed_file: Union[str, Path]) -> List[KnowledgeBase]:
    """
    Ingest the knowledge bases described in a YAML seed file.

    Expected layout:

        knowledge_bases:
          - name: Product FAQ
            description: Optional text
            documents:
              - title: Pricing
                content: Our premium plan costs ...
                metadata: {source: website}
    """
    path = Path(seed_file)
    if not path.exists():
        logger.warning(f"[KNOWLEDGE] Seed file not found - Path: {path}")
        return []

    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}

    entries = data.get("knowledge_bases", [])
    if not isinstance(entries, list):
        raise InvalidSpec(f"{path}: 'knowledge_bases' must be a list")

    created = []
    for entry in entries:
        created.append(
            index.ingest(
                name=entry.get("name", ""),
                description=entry.get("description"),
                documents=entry.get("documents", []),
                knowledge_base_id=entry.get("id"),
            )
        )

    logger.info(f"[KNOWLEDGE] Seed file loaded - Path: {path}, Knowledge bases: {len(created)}")
    return created
