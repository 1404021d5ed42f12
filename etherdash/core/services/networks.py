from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from etherdash.configuration.config import settings
from etherdash.core.errors import MalformedResponseError
from etherdash.core.structures.structures import Network
from etherdash.logging.logger import get_logger

log = get_logger(__name__)


class ChainEntry(BaseModel):
    """One entry of chains.json."""
    name: str
    title: str = ""
    chain_id: int = Field(alias="chainId")


class NetworkRegistry:
    """Known networks indexed by chain id, loaded once per process."""

    def __init__(self, networks: List[Network]) -> None:
        self._by_chain_id: Dict[int, Network] = {n.chain_id: n for n in networks}

    def __len__(self) -> int:
        return len(self._by_chain_id)

    def lookup(self, chain_id: int) -> Network:
        """Return the registered network, or an 'Unknown' network carrying the chain id."""
        network = self._by_chain_id.get(chain_id)
        return network if network is not None else Network.unknown(chain_id)

    @staticmethod
    def from_json(text: str) -> "NetworkRegistry":
        try:
            entries = [ChainEntry.model_validate(item) for item in json.loads(text)]
        except (TypeError, ValueError, ValidationError) as exc:
            raise MalformedResponseError(f"cannot parse network metadata: {exc}") from exc
        return NetworkRegistry([Network(name=e.name, title=e.title, chain_id=e.chain_id) for e in entries])

    @staticmethod
    def load(path: Optional[str] = None) -> "NetworkRegistry":
        """
        Load network metadata from disk; fail fast on a missing or broken file.

        Raises:
            FileNotFoundError: the file does not exist.
            MalformedResponseError: the file is not a valid chains list.
        """
        source = Path(path or settings.CHAINS_FILE)
        registry = NetworkRegistry.from_json(source.read_text(encoding="utf-8"))
        log.debug("[SERVICE] Loaded %d networks from %s", len(registry), source)
        return registry
