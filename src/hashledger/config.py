"""
Node Configuration

Settings come from defaults, then HASHLEDGER_* environment variables, then
whatever the CLI overrides explicitly.
"""

import os
from dataclasses import dataclass, replace
from typing import Any, Optional

from .networking.gossip import DEFAULT_TOPIC


def _env_int(name: str, default: int) -> int:
    return max(1, int(os.getenv(name, str(default))))


def _env_float(name: str, default: float) -> float:
    return max(0.0, float(os.getenv(name, str(default))))


@dataclass(frozen=True)
class NodeConfig:
    node_id: str = "node-0"
    db_path: Optional[str] = None        # None keeps blocks in memory
    wallet_path: Optional[str] = None    # None generates a throwaway key
    topic: str = DEFAULT_TOPIC
    mempool_max_size: int = 10000
    max_orphans: int = 256
    orphan_ttl: float = 600.0            # seconds
    warnings_per_second: int = 5
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> 'NodeConfig':
        defaults = cls()
        return cls(
            node_id=os.getenv("HASHLEDGER_NODE_ID", defaults.node_id),
            db_path=os.getenv("HASHLEDGER_DB_PATH") or None,
            wallet_path=os.getenv("HASHLEDGER_WALLET") or None,
            topic=os.getenv("HASHLEDGER_TOPIC", defaults.topic),
            mempool_max_size=_env_int("HASHLEDGER_MEMPOOL_MAX_SIZE", defaults.mempool_max_size),
            max_orphans=_env_int("HASHLEDGER_MAX_ORPHANS", defaults.max_orphans),
            orphan_ttl=_env_float("HASHLEDGER_ORPHAN_TTL", defaults.orphan_ttl),
            warnings_per_second=_env_int("HASHLEDGER_WARNINGS_PER_SECOND", defaults.warnings_per_second),
            log_level=os.getenv("HASHLEDGER_LOG_LEVEL", defaults.log_level).upper(),
        )

    def with_overrides(self, **overrides: Any) -> 'NodeConfig':
        """Copy with every override that is not None applied."""
        return replace(self, **{key: value for key, value in overrides.items() if value is not None})
