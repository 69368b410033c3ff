import numpy as np

from pyscf import lib
from pyscf.lib import logger
from pyscf import __config__

from dlpno.pair import PairType, CouplingOrbitalSet


class LocalCorrelationController(lib.StreamObject):
    """Pairs, occupied Fock matrix and thresholds of a local correlation run.

    Attributes
    ----------
    fock_thr : float, default=1e-5
        Fock matrix elements ``|F_ik|`` below ``fock_thr`` are not used
        in the coupling terms of the residual.
    conv_tol : float, default=1e-5
        Convergence threshold on the largest absolute residual element.
    max_cycle : int, default=100
        Maximum number of amplitude iterations.
    diis_start_residual : float, default=1e-2
        DIIS is used once the largest residual element drops below this value.
    diis_space : int, default=10
        Number of DIIS vectors kept.
    ss_scaling : float, default=1.0
        Same-spin scaling factor.
    os_scaling : float, default=1.0
        Opposite-spin scaling factor.
    """
    fock_thr = getattr(__config__, 'dlpno_controller_fock_thr', 1e-5)
    conv_tol = getattr(__config__, 'dlpno_controller_conv_tol', 1e-5)
    max_cycle = getattr(__config__, 'dlpno_controller_max_cycle', 100)
    diis_start_residual = getattr(__config__, 'dlpno_controller_diis_start_residual', 1e-2)
    diis_space = getattr(__config__, 'dlpno_controller_diis_space', 10)
    ss_scaling = getattr(__config__, 'dlpno_controller_ss_scaling', 1.0)
    os_scaling = getattr(__config__, 'dlpno_controller_os_scaling', 1.0)

    def __init__(self, pairs, fock_mo, overlap_controller=None, **kwargs):
        """
        Parameters
        ----------
        pairs : list of OrbitalPair
            Pair arena; positions in this list are the indices stored
            in the coupling sets.
        fock_mo : ndarray
            Occupied block of the Fock matrix in the localized MO basis.
        overlap_controller : DomainOverlapMatrixController, optional
            Shared provider of the PNO overlap matrices.
        """
        self.pairs = list(pairs)
        self.fock_mo = np.asarray(fock_mo)
        self.overlap_controller = overlap_controller
        self.verbose = kwargs.pop('verbose', self.verbose)
        self.stdout = kwargs.pop('stdout', self.stdout)
        for key, val in kwargs.items():
            if not hasattr(type(self), key):
                raise TypeError(f"unknown option {key}")
            setattr(self, key, val)

        self._index = {}
        for n, pair in enumerate(self.pairs):
            if pair.key in self._index:
                raise ValueError(f"pair {pair.key} is given twice")
            self._index[pair.key] = n
        if overlap_controller is not None:
            for pair in self.pairs:
                pair.set_overlap_controller(overlap_controller)

    @property
    def nocc(self):
        return self.fock_mo.shape[0]

    def dump_flags(self, verbose=None):
        log = logger.new_logger(self, verbose)
        log.info('')
        log.info('******** %s ********', self.__class__)
        log.info('number of pairs = %d', len(self.pairs))
        for t in PairType:
            log.info('  %-12s pairs = %d', t.name, len(self.get_orbital_pairs(t)))
        log.info('fock_thr = %g', self.fock_thr)
        log.info('conv_tol = %g', self.conv_tol)
        log.info('max_cycle = %d', self.max_cycle)
        log.info('diis_start_residual = %g', self.diis_start_residual)
        log.info('diis_space = %d', self.diis_space)
        log.info('ss_scaling = %g  os_scaling = %g', self.ss_scaling, self.os_scaling)
        return self

    def get_orbital_pairs(self, *types):
        if not types:
            return list(self.pairs)
        return [p for p in self.pairs if p.type in types]

    def index(self, i, j):
        """Arena position of pair ``(i,j)`` in either order, or ``None``."""
        if i > j:
            i, j = j, i
        return self._index.get((i, j))

    def get_pair(self, i, j):
        n = self.index(i, j)
        return None if n is None else self.pairs[n]

    def _solved_index(self, i, j):
        n = self.index(i, j)
        if n is None or self.pairs[n].type == PairType.VERY_DISTANT:
            return None
        return n

    def build_coupling_map(self, overlap_controller=None):
        """Attach the coupling sets to every CLOSE/DISTANT pair.

        For each pair ``(i,j)`` and occupied ``k`` a coupling set is
        created unless both ``(k,j)`` and ``(i,k)`` are screened.
        Very distant pairs are never coupled.
        """
        if overlap_controller is None:
            overlap_controller = self.overlap_controller
        log = logger.new_logger(self)
        cput0 = (logger.process_clock(), logger.perf_counter())

        nocc = self.nocc
        nsets = 0
        for pair in self.pairs:
            pair.coupled_pairs = []
            if pair.type == PairType.VERY_DISTANT:
                continue
            i, j = pair.i, pair.j
            for k in range(nocc):
                kj = self._solved_index(k, j)
                ik = self._solved_index(i, k)
                if kj is None and ik is None:
                    continue
                s_ij_kj = s_ij_ik = None
                if overlap_controller is not None:
                    if kj is not None:
                        s_ij_kj = overlap_controller.get_s(pair, self.pairs[kj])
                    if ik is not None:
                        s_ij_ik = overlap_controller.get_s(pair, self.pairs[ik])
                pair.coupled_pairs.append(
                    CouplingOrbitalSet(k, kj=kj, ik=ik,
                                       s_ij_kj=s_ij_kj, s_ij_ik=s_ij_ik))
            nsets += len(pair.coupled_pairs)

        log.debug('number of coupling orbital sets = %d', nsets)
        log.timer('coupling map', *cput0)
        return self
