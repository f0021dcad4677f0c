"""Define some types that do not fit into one particular module

In particular it enables barebone typechecking for the shape of numpy arrays.
Note that most numpy functions return :python:`ndarray[Any, Any]`
i.e. the type is mostly useful to document intent to the developer.
"""

import os
from typing import Any, Literal, NewType, TypeAlias, TypeVar

import numpy as np

# The dtype behaves covariant, i.e. if a
#  Vector[float] is allowed, then the more specific
#  Vector[float64] is also allowed.
#: Type annotation of a generic covariant type.
T_dtype_co = TypeVar("T_dtype_co", bound=np.generic, covariant=True)

#: Type annotation of a vector.
Vector = np.ndarray[tuple[int], np.dtype[T_dtype_co]]
#: Type annotation of a matrix.
Matrix = np.ndarray[tuple[int, ...], np.dtype[T_dtype_co]]
#: Type annotation of a tensor.
Tensor4D = np.ndarray[tuple[int, ...], np.dtype[T_dtype_co]]

#: Type annotation for pathlike objects.
PathLike: TypeAlias = str | os.PathLike
#: Type annotation for dictionaries holding keyword arguments.
KwargDict: TypeAlias = dict[str, Any]

#: The global index of a molecular orbital, i.e. not relative to a cluster.
OrbitalIdx = NewType("OrbitalIdx", int)

#: The index of a cluster.
ClusterIdx = NewType("ClusterIdx", int)

#: Number of alpha and beta electrons of a cluster.
FockSector: TypeAlias = tuple[int, int]

#: A pair of orbital indices :math:`(p, q)` with :math:`p < q`
#: labelling a Givens rotation between them.
OrbitalPair: TypeAlias = tuple[OrbitalIdx, OrbitalIdx]

#: Strategies to optimize the orbitals.
OOMethods: TypeAlias = Literal["bfgs", "cg", "gd", "diis", "newton"]

#: Iterative eigensolvers for the in-house active-space solver.
SolverPackages: TypeAlias = Literal["davidson", "arpack"]
