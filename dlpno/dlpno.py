import numpy as np

from pyscf.lib import logger
from pyscf import ao2mo, lo
from pyscf.mp.mp2 import MP2, _mo_splitter
from pyscf import __config__

from dlpno import mp2
from dlpno import pno
from dlpno.pair import OrbitalPair, PairType
from dlpno.overlap import DomainOverlapMatrixController
from dlpno.controller import LocalCorrelationController
from dlpno.lmp2 import LocalMP2


def kernel(mydlpno, verbose=None):
    """Driver function for DLPNO-MP2 calculations.

    Builds the local occupied orbitals, classifies the pairs with the
    dipole estimate, constructs the PNOs of all CLOSE/DISTANT pairs and
    solves the coupled local MP2 equations.

    Returns
    -------
    e_corr : float
        Sum of the local pair energies, the very distant pair estimates
        and the PNO truncation correction.
    """
    log = logger.new_logger(mydlpno, verbose)
    cput0 = (logger.process_clock(), logger.perf_counter())

    controller = mydlpno.build_controller()
    pairs = controller.get_orbital_pairs(PairType.CLOSE, PairType.DISTANT)
    cput1 = log.timer('pair construction', *cput0)

    controller.build_coupling_map()

    solver = LocalMP2(controller)
    solver.residual_mode = mydlpno.residual_mode
    solver.diis = mydlpno.diis
    solver.nthreads = mydlpno.nthreads

    npno = sum(p.npno for p in pairs)
    e_sc = solver.semicanonical_energy().sum()
    log.info('-----------------------------------------------------')
    log.info(' PNO Selection and Integral Generation')
    log.info('  Average number of PNOs per pair   %.2f', npno / max(1, len(pairs)))
    log.info('  Semi-Canonical MP2 energy         %.12f Hartree', e_sc)
    log.info('-----------------------------------------------------')

    energies = solver.kernel()
    log.timer('LMP2 solver', *cput1)

    mydlpno.controller = controller
    mydlpno.converged = solver.converged
    mydlpno.cycles = solver.cycles
    mydlpno.e_corr_local, mydlpno.e_corr_dipole, mydlpno.e_corr_pno = energies
    log.timer('DLPNO-MP2', *cput0)
    return float(energies.sum())


def classify_pairs(e_dipole, distant_thr, very_distant_thr):
    """Locality class of every pair ``i <= j`` from the dipole pair energy estimate."""
    nocc = e_dipole.shape[0]
    types = {}
    for i in range(nocc):
        for j in range(i, nocc):
            e = abs(e_dipole[i,j])
            if i == j or e >= distant_thr:
                types[i,j] = PairType.CLOSE
            elif e >= very_distant_thr:
                types[i,j] = PairType.DISTANT
            else:
                types[i,j] = PairType.VERY_DISTANT
    return types


def get_exchange_integrals(mydlpno, orbocc, orbvir):
    """``(ia|jb)`` as an array ``[i,a,j,b]``."""
    mf = mydlpno._scf
    nocc = orbocc.shape[1]
    nvir = orbvir.shape[1]
    mo_coeffs = (orbocc, orbvir, orbocc, orbvir)
    if getattr(mf, 'with_df', None):
        ovov = mf.with_df.ao2mo(mo_coeffs, compact=False)
    elif getattr(mf, '_eri', None) is not None:
        ovov = ao2mo.general(mf._eri, mo_coeffs, compact=False)
    else:
        ovov = ao2mo.general(mydlpno.mol, mo_coeffs, compact=False)
    return ovov.reshape(nocc,nvir,nocc,nvir)


def build_controller(mydlpno):
    mol = mydlpno.mol
    lmo = mydlpno.lmo
    fock = mydlpno.fock
    orbvir, e_vir = mydlpno.get_vir()

    fock_mo = lmo.conj().T @ fock @ lmo
    e_occ = np.diag(fock_mo)
    e_dipole = mp2.dipole_pair_energies(mol, e_occ, lmo, e_vir, orbvir)
    types = classify_pairs(e_dipole, mydlpno.distant_pair_thr,
                           mydlpno.very_distant_pair_thr)
    ovov = get_exchange_integrals(mydlpno, lmo, orbvir)

    ss, os = mydlpno.ss_scaling, mydlpno.os_scaling
    pairs = []
    for (i, j), ptype in types.items():
        k = ovov[i,:,j,:]
        if ptype == PairType.VERY_DISTANT:
            pair = OrbitalPair(i, j, ptype)
            if mydlpno.very_distant_sc_energy:
                pair.sc_energy = pno.semicanonical_pair_energy(
                    i, j, k, e_vir, fock_mo, ss, os)
        else:
            pair = pno.make_pno_pair(i, j, k, e_vir, fock_mo,
                                     pno_thr=mydlpno.pno_thr, pair_type=ptype,
                                     ss_scaling=ss, os_scaling=os)
        pair.dipole_energy = e_dipole[i,j]
        pairs.append(pair)
    ovov = None

    for t in PairType:
        logger.info(mydlpno, '%-12s pairs: %d', t.name,
                    sum(1 for p in pairs if p.type == t))

    return LocalCorrelationController(
        pairs, fock_mo, DomainOverlapMatrixController(),
        verbose=mydlpno.verbose, stdout=mydlpno.stdout,
        fock_thr=mydlpno.fock_thr, conv_tol=mydlpno.max_residual,
        max_cycle=mydlpno.max_cycle,
        diis_start_residual=mydlpno.diis_start_residual,
        diis_space=mydlpno.diis_space,
        ss_scaling=ss, os_scaling=os)


class DLPNOMP2(MP2):
    """DLPNO-MP2 base class.

    Attributes
    ----------
    lmo_method : str, default="pm"
        Localization method for occupied MOs.
        The occupied local orbitals can also be supplied
        through the ``lmo`` attribute.
    lmo_kwargs : dict
        Options for MO localizer.
    pno_thr : float, default=1e-8
        PNO occupation number cutoff.
    distant_pair_thr : float, default=1e-5
        Pairs whose dipole pair energy estimate is smaller in magnitude
        are DISTANT.
    very_distant_pair_thr : float, default=1e-6
        Pairs whose dipole pair energy estimate is smaller in magnitude
        are VERY_DISTANT and only enter through that estimate.
    very_distant_sc_energy : bool, default=False
        Use the semicanonical pair energy instead of the dipole estimate
        for VERY_DISTANT pairs.
    fock_thr : float, default=1e-5
        Fock matrix prescreening threshold in the coupling terms.
    max_residual : float, default=1e-5
        Convergence threshold on the largest residual element.
    max_cycle : int, default=100
        Maximum number of amplitude iterations.
    diis_start_residual : float, default=1e-2
        Start DIIS once the largest residual drops below this value.
    diis_space : int, default=10
        DIIS subspace size.
    ss_scaling, os_scaling : float, default=1.0
        Same-spin and opposite-spin scaling factors.
    residual_mode : str, default="exact"
        See :class:`dlpno.lmp2.LocalMP2`.
    nthreads : int, optional
        Number of threads for the coupling terms.
    """
    lmo_method = "pm"
    lmo_kwargs = None

    pno_thr = getattr(__config__, 'dlpno_DLPNOMP2_pno_thr', 1e-8)
    distant_pair_thr = getattr(__config__, 'dlpno_DLPNOMP2_distant_pair_thr', 1e-5)
    very_distant_pair_thr = getattr(__config__, 'dlpno_DLPNOMP2_very_distant_pair_thr', 1e-6)
    very_distant_sc_energy = False

    fock_thr = getattr(__config__, 'dlpno_DLPNOMP2_fock_thr', 1e-5)
    max_residual = getattr(__config__, 'dlpno_DLPNOMP2_max_residual', 1e-5)
    max_cycle = getattr(__config__, 'dlpno_DLPNOMP2_max_cycle', 100)
    diis = True
    diis_start_residual = getattr(__config__, 'dlpno_DLPNOMP2_diis_start_residual', 1e-2)
    diis_space = getattr(__config__, 'dlpno_DLPNOMP2_diis_space', 10)
    ss_scaling = 1.0
    os_scaling = 1.0

    residual_mode = 'exact'
    nthreads = None

    def __init__(self, mf, *,
                 frozen=None, mo_coeff=None, mo_occ=None):
        MP2.__init__(self, mf,
                     frozen=frozen, mo_coeff=mo_coeff, mo_occ=mo_occ)

        self.controller = None
        self.cycles = None
        self.e_corr_local = None
        self.e_corr_dipole = None
        self.e_corr_pno = None

        # private
        self._fock = None
        self._lmo = None

    @property
    def fock(self):
        if self._fock is None:
            self._fock = self._scf.get_fock()
        return self._fock
    @fock.setter
    def fock(self, f):
        self._fock = f

    @property
    def lmo(self):
        if self._lmo is None:
            self._lmo = self.build_lmo()
        return self._lmo
    @lmo.setter
    def lmo(self, value):
        self._lmo = value

    def dump_flags(self, verbose=None):
        log = logger.new_logger(self, verbose)
        MP2.dump_flags(self, verbose)
        log.info('lmo_method = %s', self.lmo_method)
        log.info('pno_thr = %g', self.pno_thr)
        log.info('distant_pair_thr = %g', self.distant_pair_thr)
        log.info('very_distant_pair_thr = %g', self.very_distant_pair_thr)
        log.info('residual_mode = %s', self.residual_mode)
        return self

    def build_lmo(self, orbocc=None, lmo_method=None, lmo_kwargs=None):
        if lmo_method is None:
            lmo_method = self.lmo_method
        if lmo_kwargs is None:
            lmo_kwargs = self.lmo_kwargs
        if lmo_kwargs is None:
            lmo_kwargs = {}
        if orbocc is None:
            orbocc = self.mo_coeff[:, _mo_splitter(self)[1]]

        mol = self.mol
        if lmo_method.lower() == 'boys':
            lmo = lo.Boys(mol, mo_coeff=orbocc).kernel(**lmo_kwargs)
        elif lmo_method.lower() == 'pm':
            lmo = lo.PM(mol, mo_coeff=orbocc).kernel(**lmo_kwargs)
        elif lmo_method.lower() == 'er':
            lmo = lo.ER(mol, mo_coeff=orbocc).kernel(**lmo_kwargs)
        else:
            raise NotImplementedError(f"localization method {lmo_method}")
        return lmo

    def get_vir(self):
        """Active virtual orbitals, semicanonicalized, and their energies."""
        orbvir = self.mo_coeff[:, _mo_splitter(self)[2]]
        f_vv = orbvir.conj().T @ self.fock @ orbvir
        e_vir, u = np.linalg.eigh(f_vv)
        return orbvir @ u, e_vir

    def reset(self, mol=None):
        if mol is not None:
            MP2.reset(self, mol)
        self._fock = None
        self._lmo = None
        self.controller = None
        return self

    build_controller = build_controller
    get_exchange_integrals = get_exchange_integrals

    def kernel(self):
        self.dump_flags()
        self.e_hf = self.get_e_hf()
        self.e_corr = kernel(self, verbose=self.verbose)
        self._finalize()
        return self.e_corr

    def _finalize(self):
        logger.note(self, 'E(%s) = %.15g  E_corr = %.15g',
                    self.__class__.__name__, self.e_tot, self.e_corr)
        logger.info(self, '  E_corr(local pairs)        = %.15g', self.e_corr_local)
        logger.info(self, '  E_corr(very distant pairs) = %.15g', self.e_corr_dipole)
        logger.info(self, '  E_corr(PNO truncation)     = %.15g', self.e_corr_pno)
        return self

DLPNO = DLPNOMP2
