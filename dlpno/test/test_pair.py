import numpy as np
import pytest

from dlpno.pair import OrbitalPair, PairType, CouplingOrbitalSet
from dlpno.overlap import DomainOverlapMatrixController
from dlpno.controller import LocalCorrelationController


def _pair(i, j, n=3, seed=0, **kwargs):
    rng = np.random.default_rng(seed)
    k = rng.random((n, n)) * .1
    return OrbitalPair(i, j, k=k, uncoupled=np.full((n, n), 2.), **kwargs)


def test_pair_only_upper_triangle():
    with pytest.raises(ValueError):
        OrbitalPair(2, 1)


def test_pair_transpose_rule():
    pair = _pair(0, 1)
    pair.t[:] = np.arange(9.).reshape(3, 3)
    assert np.array_equal(pair.amplitudes(0, 1), pair.t)
    assert np.array_equal(pair.amplitudes(1, 0), pair.t.T)
    with pytest.raises(KeyError):
        pair.amplitudes(0, 2)


def test_pair_defaults():
    pair = _pair(1, 1)
    assert pair.is_diagonal
    assert pair.type == PairType.CLOSE
    assert pair.npno == 3
    assert np.all(pair.t == 0)
    assert pair.residual.shape == (3, 3)


def test_overlap_controller_cache():
    rng = np.random.default_rng(1)
    a = OrbitalPair(0, 0, pno_coeff=rng.random((6, 2)))
    b = OrbitalPair(0, 1, pno_coeff=rng.random((6, 4)))
    metric = np.eye(6) * 2.
    ovlp = DomainOverlapMatrixController(metric)
    s_ab = ovlp.get_s(a, b)
    assert s_ab.shape == (2, 4)
    assert np.allclose(s_ab, 2 * a.pno_coeff.T @ b.pno_coeff)
    assert ovlp.get_s(a, b) is s_ab
    assert np.allclose(ovlp.get_s(b, a), s_ab.T)
    assert len(ovlp) == 2


def test_coupling_map_screening():
    pairs = [_pair(0, 0), _pair(0, 1), _pair(1, 1),
             _pair(0, 2, pair_type=PairType.VERY_DISTANT),
             _pair(1, 2), _pair(2, 2)]
    for p in pairs:
        p.pno_coeff = np.eye(3)
    fock = np.eye(3)
    ctrl = LocalCorrelationController(pairs, fock, DomainOverlapMatrixController())
    ctrl.build_coupling_map()

    assert pairs[3].coupled_pairs == []
    assert all(p.overlap_controller is ctrl.overlap_controller for p in pairs)
    assert ctrl.index(2, 0) == 3
    assert ctrl.get_pair(1, 0) is pairs[1]

    # pair (0,1): k=2 couples to (1,2) through (k,j); (0,2) is very distant
    sets = {cs.k: cs for cs in pairs[1].coupled_pairs}
    assert sets[2].kj == ctrl.index(1, 2)
    assert sets[2].ik is None
    assert sets[2].ik_screened
    assert np.allclose(sets[2].s_ij_kj, np.eye(3))

    # pair (0,0): k=2 only reaches (0,2), so no coupling set
    assert 2 not in {cs.k for cs in pairs[0].coupled_pairs}


def test_controller_rejects_duplicates():
    with pytest.raises(ValueError):
        LocalCorrelationController([_pair(0, 1), _pair(0, 1)], np.eye(2))


def test_controller_options():
    ctrl = LocalCorrelationController([], np.eye(2), conv_tol=1e-9, max_cycle=3)
    assert ctrl.conv_tol == 1e-9
    assert ctrl.max_cycle == 3
    with pytest.raises(TypeError):
        LocalCorrelationController([], np.eye(2), conv_tl=1e-9)


def test_coupling_set_repr():
    cs = CouplingOrbitalSet(4, kj=1)
    assert cs.ik_screened and not cs.kj_screened
    assert 'k=4' in repr(cs)
