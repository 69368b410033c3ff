import enum
import numpy as np


class PairType(enum.IntEnum):
    CLOSE = 0
    DISTANT = 1
    VERY_DISTANT = 2


class CouplingOrbitalSet:
    """Third occupied orbital ``k`` coupling pair ``(i,j)`` to ``(k,j)`` and ``(i,k)``.

    Attributes
    ----------
    k : int
        Index of the coupling occupied orbital.
    kj, ik : int or None
        Positions of the pairs ``(k,j)`` and ``(i,k)`` in the pair arena
        of the controller. ``None`` if the pair was screened out.
    s_ij_kj, s_ij_ik : ndarray or None
        PNO overlap matrices between the domain of ``(i,j)`` and the
        domains of ``(k,j)`` and ``(i,k)``. ``None`` if both pairs share
        one domain (no projection).
    """
    def __init__(self, k, kj=None, ik=None, s_ij_kj=None, s_ij_ik=None):
        self.k = k
        self.kj = kj
        self.ik = ik
        self.s_ij_kj = s_ij_kj
        self.s_ij_ik = s_ij_ik

    @property
    def kj_screened(self):
        return self.kj is None

    @property
    def ik_screened(self):
        return self.ik is None

    def __repr__(self):
        return f"CouplingOrbitalSet(k={self.k}, kj={self.kj}, ik={self.ik})"


class OrbitalPair:
    """Amplitudes and integrals of one occupied orbital pair.

    Only ``i <= j`` is stored. All matrices are expressed in the
    (semicanonical) PNO basis of the pair; ``t[a,b]`` has ``a``
    belonging to orbital ``i`` and ``b`` to orbital ``j``.

    Attributes
    ----------
    type : PairType
        Locality class.
    t : ndarray
        Amplitudes, zero by default.
    k : ndarray
        Exchange integrals ``(ia|jb)``.
    uncoupled : ndarray
        ``e_a + e_b - F_ii - F_jj``. Used as a divisor, so it must not
        contain zeros.
    residual : ndarray
        Residual of the last cycle.
    pair_energy : float
        Converged pair correlation energy (without ``delta_pno``).
    delta_pno : float
        PNO truncation error estimate.
    dipole_energy : float
        Dipole-dipole estimate of the pair energy.
    sc_energy : float
        Semicanonical pair energy estimate.
    coupled_pairs : list of CouplingOrbitalSet
    overlap_controller : DomainOverlapMatrixController or None
        Shared between all pairs.
    pno_coeff : ndarray or None
        PNO coefficients in the common virtual basis.
    """
    def __init__(self, i, j, pair_type=PairType.CLOSE, k=None, uncoupled=None,
                 t=None, pno_coeff=None):
        if i > j:
            raise ValueError(f"only pairs with i <= j are stored, got ({i},{j})")
        self.i = i
        self.j = j
        self.type = PairType(pair_type)
        self.k = None if k is None else np.asarray(k, dtype=float)
        self.uncoupled = None if uncoupled is None else np.asarray(uncoupled, dtype=float)
        if t is None and self.k is not None:
            t = np.zeros_like(self.k)
        self.t = None if t is None else np.array(t, dtype=float)
        if self.k is not None:
            assert self.t.shape == self.k.shape
            assert self.uncoupled is None or self.uncoupled.shape == self.k.shape
        self.residual = None if self.k is None else np.zeros_like(self.k)
        self.pno_coeff = pno_coeff

        self.pair_energy = 0.
        self.delta_pno = 0.
        self.dipole_energy = 0.
        self.sc_energy = 0.

        self.coupled_pairs = []
        self.overlap_controller = None

    @property
    def key(self):
        return (self.i, self.j)

    @property
    def npno(self):
        return 0 if self.k is None else self.k.shape[0]

    @property
    def is_diagonal(self):
        return self.i == self.j

    def amplitudes(self, p, q):
        """Amplitudes of the pair read as ``(p,q)``.

        ``(j,i)`` is the transpose of the stored ``(i,j)``.
        """
        if (p, q) == (self.i, self.j):
            return self.t
        elif (q, p) == (self.i, self.j):
            return self.t.T
        raise KeyError(f"pair ({self.i},{self.j}) cannot be read as ({p},{q})")

    def set_overlap_controller(self, controller):
        self.overlap_controller = controller

    def __repr__(self):
        return (f"OrbitalPair(i={self.i}, j={self.j}, type={self.type.name}, "
                f"npno={self.npno})")
