from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Union


@dataclass(frozen=True)
class GroundType:
    """CNOSSOS-EU ground class.

    Parameters
    ----------
    code : str
        One letter class code (``"A"`` to ``"H"``).
    name : str
        Human readable name.
    g : float
        Ground factor in ``[0, 1]``; 1 is porous, 0 is acoustically hard.
    flow_resistivity : float
        Representative flow resistivity (kPa·s/m²).
    """

    code: str
    name: str
    g: float
    flow_resistivity: float


@dataclass
class GroundTypeDB:
    """Dictionary style container for :class:`GroundType` objects."""

    types: Dict[str, GroundType]

    def by_code(self, code: str) -> GroundType:
        """Return ground class with ``code`` (case insensitive)."""
        return self.types[code.upper()]

    def resolve_g(self, value: Union[float, str]) -> float:
        """Return the G factor of a class code, or ``value`` itself if numeric."""
        if isinstance(value, str):
            return self.by_code(value).g
        return float(value)


def default_ground_types() -> GroundTypeDB:
    """Return the ground classes of CNOSSOS-EU table 2.5.a."""

    types = {
        "A": GroundType("A", "very soft (snow or moss-like)", 1.0, 12.5),
        "B": GroundType("B", "soft forest floor", 1.0, 31.5),
        "C": GroundType("C", "uncompacted, loose ground", 1.0, 80.0),
        "D": GroundType("D", "normal uncompacted ground", 1.0, 200.0),
        "E": GroundType("E", "compacted field and gravel", 0.7, 500.0),
        "F": GroundType("F", "compacted dense ground", 0.3, 2000.0),
        "G": GroundType("G", "hard surfaces (asphalt, concrete)", 0.0, 20000.0),
        "H": GroundType("H", "very hard and dense surfaces", 0.0, 200000.0),
    }
    return GroundTypeDB(types)
