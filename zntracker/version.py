"""
Static build information reported through the metrics exporter.
"""

from __future__ import annotations

import dataclasses
import os
import platform
from dataclasses import dataclass

__version__ = "0.3.0"


@dataclass(frozen=True, slots=True)
class BuildInfo:
    version: str
    revision: str
    peer_db_type: str
    python: str

    def with_backend(self, peer_db_type: str) -> BuildInfo:
        return dataclasses.replace(self, peer_db_type=peer_db_type)

    def labels(self) -> dict[str, str]:
        return dataclasses.asdict(self)


BUILD_INFO = BuildInfo(
    version=__version__,
    revision=os.getenv("ZNTRACKER_REVISION", "unknown"),
    peer_db_type="sqlite",
    python=f"{platform.python_implementation()} {platform.python_version()}",
)
