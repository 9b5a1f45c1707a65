"""Folding configuration.

FoldingConfig collects every knob of a proving session: which folding
strategy runs, the gate degree bound, the Poseidon shape used by the
transcript and the in-circuit hash, and the label the commitment generators
are derived from. Configs load from plain dicts or JSON files:

    {
        "strategy": "multi",
        "maxDegree": 4,
        "poseidon": {"width": 3, "fullRounds": 8, "partialRounds": 57},
        "commitmentLabel": "my-app/pedersen"
    }
"""

import json
from dataclasses import dataclass, field
from enum import Enum

from primitives.commitment import DEFAULT_LABEL
from primitives.poseidon import PoseidonConfig

DEFAULT_MAX_DEGREE = 5


class FoldStrategy(Enum):
    PAIRWISE = "pairwise"
    MULTI = "multi"


@dataclass(frozen=True)
class FoldingConfig:
    """Folding session parameters."""
    strategy: FoldStrategy = FoldStrategy.PAIRWISE
    max_degree: int = DEFAULT_MAX_DEGREE
    poseidon: PoseidonConfig = field(default_factory=PoseidonConfig)
    commitment_label: bytes = DEFAULT_LABEL

    def __post_init__(self):
        if self.max_degree < 1:
            raise ValueError(f"max_degree must be at least 1, got {self.max_degree}")

    @classmethod
    def from_dict(cls, j: dict) -> "FoldingConfig":
        kwargs = {}
        if "strategy" in j:
            kwargs["strategy"] = FoldStrategy(j["strategy"])
        if "maxDegree" in j:
            kwargs["max_degree"] = int(j["maxDegree"])
        if "poseidon" in j:
            kwargs["poseidon"] = _parse_poseidon(j["poseidon"])
        if "commitmentLabel" in j:
            label = j["commitmentLabel"]
            kwargs["commitment_label"] = label.encode() if isinstance(label, str) else bytes(label)
        return cls(**kwargs)

    @classmethod
    def from_json(cls, path: str) -> "FoldingConfig":
        """Load a FoldingConfig from a JSON file."""
        with open(path) as f:
            j = json.load(f)
        return cls.from_dict(j)


def _parse_poseidon(p: dict) -> PoseidonConfig:
    defaults = PoseidonConfig()
    return PoseidonConfig(
        width=p.get("width", defaults.width),
        full_rounds=p.get("fullRounds", defaults.full_rounds),
        partial_rounds=p.get("partialRounds", defaults.partial_rounds),
    )
