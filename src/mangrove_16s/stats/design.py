# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import re
from dataclasses import dataclass
from enum import Enum
from itertools import combinations
from typing import Any, Dict, List, Sequence, Tuple, Union

# Third-Party Imports
import numpy as np
import pandas as pd

# Local Imports
from mangrove_16s import constants

# ==================================================================================== #

class Interaction(str, Enum):
    """Interaction structure of a factorial design."""
    NONE = 'none'          # main effects only:   a + b + c
    PAIRWISE = 'pairwise'  # up to 2-way terms:   (a + b + c)^2
    FULL = 'full'          # all interactions:    a * b * c


@dataclass(frozen=True)
class Design:
    """Grouping factors and their interaction structure.

    Terms are ordered main effects first, then two-way and three-way
    interactions, each in factor order; PERMANOVA tests them sequentially in
    that order.
    """
    factors: Tuple[str, ...]
    interaction: Interaction = Interaction.NONE

    def __post_init__(self):
        factors = (self.factors,) if isinstance(self.factors, str) else tuple(self.factors)
        object.__setattr__(self, 'factors', factors)
        object.__setattr__(self, 'interaction', Interaction(self.interaction))
        if not 1 <= len(factors) <= 3:
            raise ValueError(f"A design needs 1 to 3 factors, got {len(factors)}")
        if len(set(factors)) != len(factors):
            raise ValueError(f"Duplicate factors in design: {factors}")

    @property
    def terms(self) -> Tuple[Tuple[str, ...], ...]:
        max_order = {
            Interaction.NONE: 1,
            Interaction.PAIRWISE: 2,
            Interaction.FULL: len(self.factors),
        }[self.interaction]
        return tuple(
            term
            for order in range(1, min(max_order, len(self.factors)) + 1)
            for term in combinations(self.factors, order)
        )

    @property
    def label(self) -> str:
        if len(self.factors) == 1 or self.interaction is Interaction.NONE:
            return ' + '.join(self.factors)
        if self.interaction is Interaction.FULL or len(self.factors) == 2:
            return ' * '.join(self.factors)
        return f"({' + '.join(self.factors)})^2"

    def __str__(self) -> str:
        return self.label

    @classmethod
    def parse(cls, spec: Union[str, Dict[str, Any], "Design"]) -> "Design":
        """Build a design from configuration.

        Accepts a mapping ``{'factors': [...], 'interaction': 'full'}`` or the
        shorthand strings ``a + b``, ``a * b * c`` and ``(a + b + c)^2``.
        """
        if isinstance(spec, Design):
            return spec
        if isinstance(spec, dict):
            return cls(tuple(spec['factors']), Interaction(spec.get('interaction', 'none')))

        text = str(spec).replace(' ', '')
        match = re.fullmatch(r'\((.+)\)\^2', text)
        if match:
            return cls(tuple(match.group(1).split('+')), Interaction.PAIRWISE)
        if '*' in text and '+' in text:
            raise ValueError(f"Mixed '+' and '*' designs are not supported: {spec}")
        if '*' in text:
            return cls(tuple(text.split('*')), Interaction.FULL)
        return cls(tuple(text.split('+')), Interaction.NONE)


def term_label(term: Sequence[str]) -> str:
    return ':'.join(term)


def default_designs() -> List[Design]:
    """PERMANOVA designs run over the zone × season × depth survey."""
    zone, season = constants.ZONE_COLUMN, constants.SEASON_COLUMN
    depth, depth_group = constants.DEPTH_COLUMN, constants.DEPTH_GROUP_COLUMN
    designs = [Design((f,)) for f in (zone, season, depth, depth_group)]
    for pair in combinations((zone, season, depth_group), 2):
        designs.append(Design(pair, Interaction.NONE))
        designs.append(Design(pair, Interaction.FULL))
    designs += [
        Design((zone, depth), Interaction.FULL),
        Design((season, depth), Interaction.FULL),
    ]
    for interaction in Interaction:
        designs.append(Design((zone, season, depth_group), interaction))
    designs += [
        Design((zone, season, depth), Interaction.PAIRWISE),
        Design((zone, season, depth), Interaction.FULL),
    ]
    return designs

# ================================== MODEL MATRIX ==================================== #

def treatment_columns(values: pd.Series, levels: Sequence[Any]) -> np.ndarray:
    """Dummy coding with the first level as reference (n × (k - 1))."""
    return np.column_stack(
        [(values == level).to_numpy(dtype=float) for level in levels[1:]]
    ) if len(levels) > 1 else np.empty((len(values), 0))


def term_blocks(
    frame: pd.DataFrame,
    design: Design,
    levels: Dict[str, Sequence[Any]]
) -> List[np.ndarray]:
    """Model-matrix columns for each term of ``design``, in term order.

    Interaction columns are products of the dummy columns of their factors.
    """
    dummies = {f: treatment_columns(frame[f], levels[f]) for f in design.factors}
    blocks = []
    for term in design.terms:
        block = dummies[term[0]]
        for factor in term[1:]:
            other = dummies[factor]
            block = np.column_stack([
                block[:, i] * other[:, j]
                for i in range(block.shape[1]) for j in range(other.shape[1])
            ]) if block.shape[1] and other.shape[1] else np.empty((len(frame), 0))
        blocks.append(block)
    return blocks
