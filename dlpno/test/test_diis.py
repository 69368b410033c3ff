import numpy as np

from dlpno.pair import OrbitalPair
from dlpno.diis import OrbitalPairDIIS, pairs_to_vector, vector_to_pairs


def _pairs(seed=0):
    rng = np.random.default_rng(seed)
    pairs = []
    for (i, j), n in zip([(0, 0), (0, 1), (1, 1)], [2, 3, 1]):
        pair = OrbitalPair(i, j, k=rng.random((n, n)), uncoupled=np.ones((n, n)),
                           t=rng.random((n, n)))
        pair.residual = rng.random((n, n)) * 1e-3
        pairs.append(pair)
    return pairs


def test_vector_round_order():
    pairs = _pairs()
    vec = pairs_to_vector(pairs)
    assert vec.size == 4 + 9 + 1
    assert np.array_equal(vec[4:13], pairs[1].t.ravel())
    vector_to_pairs(vec * 2, pairs)
    assert np.allclose(pairs_to_vector(pairs), vec * 2)


def test_diis_first_call_is_noop():
    pairs = _pairs()
    t0 = [p.t.copy() for p in pairs]
    adiis = OrbitalPairDIIS(space=4)
    adiis.optimize(pairs)
    for p, t in zip(pairs, t0):
        assert np.allclose(p.t, t, rtol=1e-14, atol=1e-14)


def test_diis_ring_buffer():
    adiis = OrbitalPairDIIS(space=3)
    for seed in range(6):
        adiis.optimize(_pairs(seed))
        assert adiis.get_num_vec() == min(seed + 1, 3)


def test_diis_extrapolation_is_affine():
    # two snapshots with residuals r and -r: the extrapolation is their mean
    pairs = _pairs()
    r = pairs_to_vector(pairs, 'residual')
    t1 = pairs_to_vector(pairs)
    adiis = OrbitalPairDIIS(space=4)
    adiis.optimize(pairs)

    t2 = t1 + 1.
    vector_to_pairs(t2.copy(), pairs)
    vector_to_pairs(-r, pairs, 'residual')
    adiis.optimize(pairs)
    assert np.allclose(pairs_to_vector(pairs), .5 * (t1 + t2))
