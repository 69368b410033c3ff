"""
Iterative solver for the local MP2 amplitude equations in a PNO basis.

For every CLOSE/DISTANT pair (i,j) the residual is

    R_ij = K_ij + (e_a + e_b - F_ii - F_jj) T_ij
           - sum_{k != i} F_ik S(ij,kj) T_kj S(ij,kj)^T
           - sum_{k != j} F_kj S(ij,ik) T_ik S(ij,ik)^T

and the amplitudes are updated as T_ij -= R_ij / (e_a + e_b - F_ii - F_jj).
"""

from concurrent.futures import ThreadPoolExecutor
import numpy as np

from pyscf import lib
from pyscf.lib import logger
from pyscf import __config__

from dlpno import util
from dlpno.pair import PairType
from dlpno.diis import OrbitalPairDIIS


class ConvergenceError(RuntimeError):
    """Amplitude iterations did not converge within ``max_cycle``."""
    pass


def _sandwich(s, t):
    if s is None:
        return t
    return s @ t @ s.T

def _coupling_increment(pair, coupling_sets, arena, fock, fock_thr,
                        skip_distant=False):
    """Coupling contribution of ``coupling_sets`` to the residual of ``pair``."""
    i, j = pair.i, pair.j
    out = np.zeros_like(pair.k)
    for cs in coupling_sets:
        k = cs.k
        if cs.kj is not None and k != i and abs(fock[i,k]) >= fock_thr:
            kj = arena[cs.kj]
            if not (skip_distant and kj.type == PairType.DISTANT):
                out -= fock[i,k] * _sandwich(cs.s_ij_kj, kj.amplitudes(k, j))
        if cs.ik is not None and k != j and abs(fock[k,j]) >= fock_thr:
            ik = arena[cs.ik]
            if not (skip_distant and ik.type == PairType.DISTANT):
                out -= fock[k,j] * _sandwich(cs.s_ij_ik, ik.amplitudes(i, k))
    return out


def get_residual(mylmp2, pair, executor=None, nworkers=1):
    """Residual of ``pair`` from the current amplitudes of all pairs.

    The coupling sets are split statically over ``nworkers`` tasks of
    ``executor``; every task sums into its own buffer and the buffers
    are added after all tasks finished.
    """
    ctrl = mylmp2.controller
    if mylmp2.residual_mode == 'exact':
        skip_distant = False
    elif mylmp2.residual_mode == 'approx':
        skip_distant = True
    else:
        raise NotImplementedError(f"residual_mode {mylmp2.residual_mode}")

    r = pair.k.copy()
    r += pair.uncoupled * pair.t

    sets = pair.coupled_pairs
    args = (ctrl.pairs, ctrl.fock_mo, ctrl.fock_thr, skip_distant)
    if executor is None or nworkers < 2 or len(sets) < 2:
        r += _coupling_increment(pair, sets, *args)
    else:
        futures = [executor.submit(_coupling_increment, pair,
                                   [sets[n] for n in chunk], *args)
                   for chunk in util.split_static(len(sets), nworkers)]
        for fut in futures:
            r += fut.result()
    return r


def update_amps(mylmp2, pairs, executor=None, nworkers=1):
    """One Jacobi cycle over ``pairs``.

    All residuals are built from the amplitudes of the previous cycle,
    then every ``t`` is updated in place. Returns the largest absolute
    residual element.
    """
    rmax = 0.
    steps = []
    for pair in pairs:
        r = get_residual(mylmp2, pair, executor, nworkers)
        pair.residual = r
        # uncoupled must not contain zeros
        steps.append(r / pair.uncoupled)
        if r.size > 0:
            rmax = max(rmax, float(np.max(np.abs(r))))
    for pair, dt in zip(pairs, steps):
        pair.t -= dt
    return rmax


def energy(mylmp2, pairs=None, very_distant_pairs=None):
    """Energy vector ``[local pairs, very distant pairs, PNO truncation]``.

    Sets ``pair_energy`` of every solved pair.
    """
    ctrl = mylmp2.controller
    if pairs is None:
        pairs = ctrl.get_orbital_pairs(PairType.CLOSE, PairType.DISTANT)
    if very_distant_pairs is None:
        very_distant_pairs = ctrl.get_orbital_pairs(PairType.VERY_DISTANT)

    e_local = 0.
    for pair in pairs:
        e = util.pair_energy(pair.t, pair.k, util.pair_weight(pair),
                             ctrl.ss_scaling, ctrl.os_scaling)
        pair.pair_energy = e
        e_local += e

    e_dipole = 0.
    for pair in very_distant_pairs:
        if pair.sc_energy != 0.:
            e_dipole += pair.sc_energy
        else:
            e_dipole += pair.dipole_energy

    e_pno = 0.
    for pair in pairs:
        e_pno += pair.delta_pno
    return np.array([e_local, e_dipole, e_pno])


def semicanonical_energy(mylmp2, pairs=None, very_distant_pairs=None):
    """Energy vector with the uncoupled amplitudes ``-k / uncoupled``.

    Pair amplitudes and energies are left untouched.
    """
    ctrl = mylmp2.controller
    if pairs is None:
        pairs = ctrl.get_orbital_pairs(PairType.CLOSE, PairType.DISTANT)
    if very_distant_pairs is None:
        very_distant_pairs = ctrl.get_orbital_pairs(PairType.VERY_DISTANT)

    e_sc = 0.
    for pair in pairs:
        t = -pair.k / pair.uncoupled
        e_sc += util.pair_energy(t, pair.k, util.pair_weight(pair),
                                 ctrl.ss_scaling, ctrl.os_scaling)
    e_dipole = sum(p.sc_energy if p.sc_energy != 0. else p.dipole_energy
                   for p in very_distant_pairs)
    e_pno = sum(p.delta_pno for p in pairs)
    return np.array([e_sc, e_dipole, e_pno])


def kernel(mylmp2, pairs=None, very_distant_pairs=None, verbose=None):
    """Optimize the amplitudes of ``pairs`` and return the energy vector.

    Raises
    ------
    ConvergenceError
        If the largest residual element is still above ``conv_tol``
        after ``max_cycle`` cycles.
    """
    log = logger.new_logger(mylmp2, verbose)
    ctrl = mylmp2.controller
    if pairs is None:
        pairs = ctrl.get_orbital_pairs(PairType.CLOSE, PairType.DISTANT)
    if very_distant_pairs is None:
        very_distant_pairs = ctrl.get_orbital_pairs(PairType.VERY_DISTANT)
    pairs = [p for p in pairs if p.type != PairType.VERY_DISTANT]

    cput1 = cput0 = (logger.process_clock(), logger.perf_counter())
    if mylmp2.diis:
        adiis = OrbitalPairDIIS(mylmp2, space=ctrl.diis_space)
    else:
        adiis = None
    nworkers = mylmp2.nthreads
    if nworkers is None:
        nworkers = lib.num_threads()

    converged = False
    mylmp2.cycles = 0
    eold = 0.
    log.info('%6s %14s %20s %14s', 'Cycle', 'abs. max. Res.', 'Corr. Energy', 'Delta E_corr')
    with ThreadPoolExecutor(max_workers=nworkers) as executor:
        for cycle in range(1, ctrl.max_cycle+1):
            rmax = update_amps(mylmp2, pairs, executor, nworkers)
            enew = energy(mylmp2, pairs, very_distant_pairs).sum()
            mylmp2.cycles = cycle
            log.info('%6d %14.6e %20.12f %14.6e', cycle, rmax, enew, enew - eold)
            eold = enew
            cput1 = log.timer_debug1('LMP2 iter', *cput1)
            if rmax < ctrl.conv_tol:
                converged = True
                break
            if adiis is not None and rmax < ctrl.diis_start_residual:
                adiis.optimize(pairs)

    if not converged:
        raise ConvergenceError(f"Canceling amplitude optimization after "
                               f"{mylmp2.cycles} cycles. NOT CONVERGED")
    log.info('Converged!')
    log.timer('LMP2 amplitude optimization', *cput0)
    return energy(mylmp2, pairs, very_distant_pairs)


class LocalMP2(lib.StreamObject):
    """Local MP2 amplitude solver on a :class:`LocalCorrelationController`.

    Attributes
    ----------
    residual_mode : str, default="exact"
        ``"exact"`` couples every pair with all unscreened partners.
        ``"approx"`` drops the coupling terms of DISTANT partner pairs.
    diis : bool, default=True
        Whether to use DIIS extrapolation over all pair amplitudes.
    nthreads : int, optional
        Number of workers for the coupling terms.
        Defaults to ``lib.num_threads()``.

    Saved results
    -------------
    converged : bool
    cycles : int
    energies : ndarray
        ``[E_local, E_very_distant, E_pno]``.
    e_corr : float
        Sum of ``energies``.
    """
    residual_mode = getattr(__config__, 'dlpno_lmp2_LocalMP2_residual_mode', 'exact')
    diis = getattr(__config__, 'dlpno_lmp2_LocalMP2_diis', True)
    nthreads = None

    def __init__(self, controller):
        self.controller = controller
        self.verbose = controller.verbose
        self.stdout = controller.stdout

        self.converged = False
        self.cycles = None
        self.energies = None
        self.e_corr = None

    def dump_flags(self, verbose=None):
        log = logger.new_logger(self, verbose)
        log.info('')
        log.info('******** %s ********', self.__class__)
        log.info('residual_mode = %s', self.residual_mode)
        log.info('diis = %s', self.diis)
        log.info('nthreads = %s', self.nthreads)
        self.controller.dump_flags(verbose)
        return self

    def kernel(self, pairs=None, very_distant_pairs=None):
        self.dump_flags()
        self.converged = False
        self.energies = kernel(self, pairs, very_distant_pairs, verbose=self.verbose)
        self.converged = True
        self.e_corr = float(self.energies.sum())
        self._finalize()
        return self.energies

    def calculate_energy_correction(self, pairs=None):
        """Solve for a mixed list of pairs; VERY_DISTANT ones are split off."""
        if pairs is None:
            return self.kernel()
        close = [p for p in pairs if p.type != PairType.VERY_DISTANT]
        very_distant = [p for p in pairs if p.type == PairType.VERY_DISTANT]
        return self.kernel(close, very_distant)

    def _finalize(self):
        log = logger.new_logger(self)
        e_local, e_dipole, e_pno = self.energies
        log.note('E_corr(LMP2) = %.15g', self.e_corr)
        log.info('  local pairs          %.15g', e_local)
        log.info('  very distant pairs   %.15g', e_dipole)
        log.info('  PNO truncation       %.15g', e_pno)
        return self

    update_amps = update_amps
    get_residual = get_residual
    energy = energy
    semicanonical_energy = semicanonical_energy
