from clustermf.cmf.ansatz import Ansatz, FCIAnsatz, RASCIAnsatz
from clustermf.cmf.ci import cmf_ci, cmf_ci_iteration
from clustermf.cmf.cluster import MOCluster, make_clusters
from clustermf.cmf.diis import cmf_oo_diis
from clustermf.cmf.driver import CMF
from clustermf.cmf.energy import assemble_full_rdm, compute_cmf_energy
from clustermf.cmf.integrals import InCoreInts
from clustermf.cmf.opt import cmf_oo, cmf_oo_gd, cmf_oo_newton
from clustermf.cmf.projection import projection_vector
from clustermf.cmf.rdm import RDM1, RDM2

__all__ = [
    "CMF",
    "Ansatz",
    "FCIAnsatz",
    "RASCIAnsatz",
    "MOCluster",
    "make_clusters",
    "InCoreInts",
    "RDM1",
    "RDM2",
    "cmf_ci",
    "cmf_ci_iteration",
    "compute_cmf_energy",
    "assemble_full_rdm",
    "cmf_oo",
    "cmf_oo_gd",
    "cmf_oo_diis",
    "cmf_oo_newton",
    "projection_vector",
]
