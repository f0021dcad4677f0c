"""Wavefunction ansatze for a single cluster.

An ansatz fixes the number of orbitals and electrons of a cluster and
the determinants that span its wavefunction. The ansatze form a closed set,
use :data:`Ansatz` for annotations and dispatch with :func:`isinstance`.
"""

from math import comb
from typing import TypeAlias

import numpy as np
from attrs import define, field
from pyscf.fci import cistring

from clustermf.shared.helper import ensure
from clustermf.shared.typing import Matrix, OrbitalPair


def _all_pairs(orbs: range) -> list[OrbitalPair]:
    return [(p, q) for p in orbs for q in orbs if p < q]  # type: ignore[misc]


def _check_sector(no: int, na: int, nb: int) -> None:
    ensure(no > 0, "An ansatz needs at least one orbital.")
    ensure(
        0 <= na <= no and 0 <= nb <= no,
        f"Sector (na={na}, nb={nb}) does not fit into {no} orbitals.",
    )


@define(frozen=True)
class FCIAnsatz:
    """Full configuration interaction in :python:`no` orbitals.

    Parameters
    ----------
    no :
        Number of orbitals.
    na :
        Number of alpha electrons.
    nb :
        Number of beta electrons.
    """

    no: int
    na: int
    nb: int

    def __attrs_post_init__(self) -> None:
        _check_sector(self.no, self.na, self.nb)

    @property
    def dima(self) -> int:
        return comb(self.no, self.na)

    @property
    def dimb(self) -> int:
        return comb(self.no, self.nb)

    @property
    def dim(self) -> int:
        return self.dima * self.dimb

    def determinant_mask(self) -> Matrix[np.bool_]:
        return np.ones((self.dima, self.dimb), dtype=bool)

    def invariant_orbital_rotations(self) -> list[OrbitalPair]:
        """The energy is invariant under any rotation among the orbitals."""
        return _all_pairs(range(self.no))

    def ras_orbitals(self) -> tuple[range, range, range]:
        return range(self.no), range(0), range(0)


@define(frozen=True)
class RASCIAnsatz:
    """Restricted active space configuration interaction.

    The orbitals are split into three consecutive spaces RAS1, RAS2 and RAS3.
    Determinants with more than :python:`max_h` holes in RAS1
    or more than :python:`max_p` electrons in RAS3 are excluded.

    Parameters
    ----------
    no :
        Number of orbitals.
    na :
        Number of alpha electrons.
    nb :
        Number of beta electrons.
    ras_spaces :
        Number of orbitals in RAS1, RAS2 and RAS3.
    max_h :
        Maximum number of holes in RAS1.
    max_p :
        Maximum number of particles in RAS3.
    """

    no: int
    na: int
    nb: int
    ras_spaces: tuple[int, int, int] = field(converter=tuple)
    max_h: int = 0
    max_p: int = 0

    def __attrs_post_init__(self) -> None:
        _check_sector(self.no, self.na, self.nb)
        ensure(len(self.ras_spaces) == 3, "Three RAS spaces are required.")
        ensure(
            sum(self.ras_spaces) == self.no,
            f"RAS spaces {self.ras_spaces} do not add up to {self.no} orbitals.",
        )

    @property
    def dima(self) -> int:
        return comb(self.no, self.na)

    @property
    def dimb(self) -> int:
        return comb(self.no, self.nb)

    @property
    def dim(self) -> int:
        return int(self.determinant_mask().sum())

    def ras_orbitals(self) -> tuple[range, range, range]:
        n1, n2, _ = self.ras_spaces
        return range(n1), range(n1, n1 + n2), range(n1 + n2, self.no)

    def _count_in(self, strings: np.ndarray, orbs: range) -> np.ndarray:
        bits = sum(1 << p for p in orbs)
        return np.array([bin(int(s) & bits).count("1") for s in strings], dtype=int)

    def determinant_mask(self) -> Matrix[np.bool_]:
        """Boolean matrix over pairs of alpha and beta strings, in the order
        of :func:`pyscf.fci.cistring.make_strings`, marking the determinants
        that belong to the ansatz."""
        ras1, _, ras3 = self.ras_orbitals()
        strs_a = cistring.make_strings(range(self.no), self.na)
        strs_b = cistring.make_strings(range(self.no), self.nb)
        holes = (2 * len(ras1)) - (
            self._count_in(strs_a, ras1)[:, None] + self._count_in(strs_b, ras1)[None]
        )
        particles = (
            self._count_in(strs_a, ras3)[:, None] + self._count_in(strs_b, ras3)[None]
        )
        return (holes <= self.max_h) & (particles <= self.max_p)

    def invariant_orbital_rotations(self) -> list[OrbitalPair]:
        """The energy is invariant under rotations within each RAS space."""
        return [pair for space in self.ras_orbitals() for pair in _all_pairs(space)]


Ansatz: TypeAlias = FCIAnsatz | RASCIAnsatz
