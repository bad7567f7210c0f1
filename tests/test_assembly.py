import numpy as np
import pytest

from simp_topopt.core.assembly import (
    CSRMatrix,
    apply_boundary_conditions,
    apply_boundary_conditions_fast,
    assemble_stiffness_matrix,
    assemble_stiffness_matrix_fast,
    simp_modulus,
)
from simp_topopt.core.connectivity import precompute_mesh_connectivity
from simp_topopt.core.fem import element_stiffness, total_dofs


def _random_densities(n, seed=0):
    return np.random.default_rng(seed).uniform(0.1, 1.0, size=n)


def test_connectivity_shapes_and_sorted_rows():
    mesh = precompute_mesh_connectivity(4, 3)
    assert mesh.n_dofs == total_dofs(4, 3)
    assert mesh.n_elem == 12
    assert mesh.row_pointers.shape == (mesh.n_dofs + 1,)
    assert mesh.col_indices.shape == (mesh.nnz,)
    assert mesh.elem_to_csr.shape == (12, 64)
    for r in range(mesh.n_dofs):
        cols = mesh.col_indices[mesh.row_pointers[r]:mesh.row_pointers[r + 1]]
        assert np.all(np.diff(cols) > 0)
        assert r in cols
        assert mesh.col_indices[mesh.diag_indices[r]] == r


def test_connectivity_pattern_is_symmetric():
    mesh = precompute_mesh_connectivity(3, 2)
    pattern = set(zip(mesh.row_ids.tolist(), mesh.col_indices.tolist()))
    assert all((c, r) in pattern for r, c in pattern)


def test_connectivity_map_points_to_matching_row_and_column():
    mesh = precompute_mesh_connectivity(3, 2)
    for e in range(mesh.n_elem):
        dofs = mesh.element_dofs[e]
        slots = mesh.elem_to_csr[e].reshape(8, 8)
        for i in range(8):
            for j in range(8):
                assert mesh.row_ids[slots[i, j]] == dofs[i]
                assert mesh.col_indices[slots[i, j]] == dofs[j]


def test_connectivity_interior_row_has_18_entries():
    mesh = precompute_mesh_connectivity(4, 4)
    interior_node = 2 * 5 + 2  # node (2, 2)
    row = 2 * interior_node
    assert mesh.row_pointers[row + 1] - mesh.row_pointers[row] == 18


def test_connectivity_rejects_bad_sizes():
    with pytest.raises(ValueError):
        precompute_mesh_connectivity(0, 3)
    with pytest.raises(ValueError):
        precompute_mesh_connectivity(3, 2.5)


def test_simp_modulus_law():
    assert simp_modulus(1.0, 3.0, 1e-9, 1.0) == pytest.approx(1.0)
    assert simp_modulus(0.0, 3.0, 1e-9, 1.0) == pytest.approx(1e-9)
    ratio = simp_modulus(0.5, 3.0, 0.0, 1.0) / simp_modulus(1.0, 3.0, 0.0, 1.0)
    assert ratio == pytest.approx(0.125)


def test_assembled_stiffness_scales_with_penalized_density():
    nelx, nely = 4, 3
    half = np.full(nelx * nely, 0.5)
    full = np.ones(nelx * nely)
    K_half = assemble_stiffness_matrix(nelx, nely, half, penal=3.0, Emin=0.0)
    K_full = assemble_stiffness_matrix(nelx, nely, full, penal=3.0, Emin=0.0)
    ratio = np.abs(K_half.values).sum() / np.abs(K_full.values).sum()
    assert ratio == pytest.approx(0.125)

    mesh = precompute_mesh_connectivity(nelx, nely)
    v_half = assemble_stiffness_matrix_fast(mesh, half, 3.0, 0.0, 1.0, np.zeros(mesh.nnz))
    v_full = assemble_stiffness_matrix_fast(mesh, full, 3.0, 0.0, 1.0, np.zeros(mesh.nnz))
    assert np.abs(v_half).sum() / np.abs(v_full).sum() == pytest.approx(0.125)


def test_basic_assembly_single_element_equals_ke():
    K = assemble_stiffness_matrix(1, 1, np.ones(1), penal=3.0, Emin=1e-9, E0=1.0, nu=0.3)
    np.testing.assert_allclose(K.to_dense(), element_stiffness(1.0, 0.3), atol=1e-12)


def test_basic_assembly_is_symmetric():
    K = assemble_stiffness_matrix(4, 3, _random_densities(12))
    dense = K.to_dense()
    np.testing.assert_allclose(dense, dense.T, atol=1e-12)


def test_fast_assembly_matches_basic():
    nelx, nely = 5, 4
    rho = _random_densities(nelx * nely, seed=3)
    K = assemble_stiffness_matrix(nelx, nely, rho, 3.0, 1e-9, 1.0, 0.3)
    mesh = precompute_mesh_connectivity(nelx, nely, 0.3)
    values = np.full(mesh.nnz, 123.0)  # stale content must be cleared
    assemble_stiffness_matrix_fast(mesh, rho, 3.0, 1e-9, 1.0, values)
    fast = CSRMatrix(values, mesh.col_indices, mesh.row_pointers, mesh.n_dofs)
    np.testing.assert_allclose(fast.to_dense(), K.to_dense(), atol=1e-10)


def test_fast_assembly_reuses_contribution_buffer():
    mesh = precompute_mesh_connectivity(3, 3)
    buf = np.empty((mesh.n_elem, 64))
    v1 = assemble_stiffness_matrix_fast(mesh, np.full(9, 0.5), 3.0, 1e-9, 1.0, np.zeros(mesh.nnz), buf)
    v2 = assemble_stiffness_matrix_fast(mesh, np.full(9, 0.5), 3.0, 1e-9, 1.0, np.zeros(mesh.nnz))
    np.testing.assert_allclose(v1, v2)


def test_assembly_rejects_wrong_density_length():
    with pytest.raises(ValueError):
        assemble_stiffness_matrix(3, 3, np.ones(8))


def test_boundary_conditions_identity_rows_and_symmetry():
    nelx, nely = 3, 2
    K = assemble_stiffness_matrix(nelx, nely, np.ones(nelx * nely))
    f = np.arange(K.n, dtype=float)
    f_original = f.copy()
    fixed = [0, 1, 5]
    f_mod = apply_boundary_conditions(K, f, fixed)
    dense = K.to_dense()

    np.testing.assert_array_equal(f, f_original)
    np.testing.assert_allclose(dense, dense.T, atol=1e-12)
    for dof in fixed:
        expected = np.zeros(K.n)
        expected[dof] = 1.0
        np.testing.assert_allclose(dense[dof], expected)
        np.testing.assert_allclose(dense[:, dof], expected)
        assert f_mod[dof] == 0.0
    free = [i for i in range(K.n) if i not in fixed]
    np.testing.assert_allclose(f_mod[free], f_original[free])


def test_fast_boundary_conditions_match_basic():
    nelx, nely = 4, 3
    rho = _random_densities(nelx * nely, seed=7)
    fixed = np.array([0, 1, 2, 3, 17])
    f = np.random.default_rng(1).normal(size=total_dofs(nelx, nely))

    K = assemble_stiffness_matrix(nelx, nely, rho)
    f_basic = apply_boundary_conditions(K, f, fixed)

    mesh = precompute_mesh_connectivity(nelx, nely)
    values = np.zeros(mesh.nnz)
    assemble_stiffness_matrix_fast(mesh, rho, 3.0, 1e-9, 1.0, values)
    f_fast = apply_boundary_conditions_fast(mesh, values, f, fixed)

    fast = CSRMatrix(values, mesh.col_indices, mesh.row_pointers, mesh.n_dofs)
    np.testing.assert_allclose(fast.to_dense(), K.to_dense(), atol=1e-10)
    np.testing.assert_allclose(f_fast, f_basic)


def test_csr_matrix_scipy_conversion():
    K = assemble_stiffness_matrix(2, 2, np.ones(4))
    np.testing.assert_allclose(K.to_scipy().toarray(), K.to_dense())
    np.testing.assert_allclose(K.diagonal(), np.diag(K.to_dense()))


def test_void_mesh_keeps_diagonal_slots_for_boundary_conditions():
    nelx, nely = 3, 2
    K = assemble_stiffness_matrix(nelx, nely, np.zeros(nelx * nely), penal=3.0, Emin=0.0)
    row_ids = np.repeat(np.arange(K.n), np.diff(K.row_pointers))
    assert np.count_nonzero(K.col_indices == row_ids) == K.n

    fixed = [0, 1, 7]
    f_mod = apply_boundary_conditions(K, np.ones(K.n), fixed)
    dense = K.to_dense()
    for dof in fixed:
        assert dense[dof, dof] == 1.0
        assert f_mod[dof] == 0.0
