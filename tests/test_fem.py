import numpy as np
import pytest

from simp_topopt.core.fem import (
    element_dof_table,
    element_dofs,
    element_index,
    element_stiffness,
    has_positive_diagonal,
    is_symmetric,
    node_index,
    total_dofs,
)


def test_element_stiffness_is_symmetric_with_positive_diagonal():
    KE = element_stiffness(1.0, 0.3)
    assert KE.shape == (8, 8)
    assert is_symmetric(KE)
    assert has_positive_diagonal(KE)


def test_element_stiffness_scales_linearly_with_modulus():
    np.testing.assert_allclose(element_stiffness(2.0, 0.3), 2.0 * element_stiffness(1.0, 0.3))


def test_element_stiffness_known_coefficients():
    nu = 0.3
    KE = element_stiffness(1.0, nu)
    scale = 1.0 / (1.0 - nu ** 2)
    assert KE[0, 0] == pytest.approx(scale * (0.5 - nu / 6.0))
    assert KE[0, 1] == pytest.approx(scale * (0.125 + nu / 8.0))
    assert KE[1, 2] == pytest.approx(scale * (0.125 - 3.0 * nu / 8.0))


def test_element_stiffness_has_rigid_body_modes():
    KE = element_stiffness(1.0, 0.3)
    translate_x = np.tile([1.0, 0.0], 4)
    translate_y = np.tile([0.0, 1.0], 4)
    np.testing.assert_allclose(KE @ translate_x, 0.0, atol=1e-12)
    np.testing.assert_allclose(KE @ translate_y, 0.0, atol=1e-12)
    eigenvalues = np.linalg.eigvalsh(KE)
    assert eigenvalues[0] > -1e-10
    assert np.sum(np.abs(eigenvalues) < 1e-10) == 3


def test_element_dofs_first_element():
    np.testing.assert_array_equal(element_dofs(0, 0, 2, 2), [0, 1, 6, 7, 8, 9, 2, 3])


def test_element_dofs_unique_and_in_range():
    nelx, nely = 4, 3
    n = total_dofs(nelx, nely)
    for elx in range(nelx):
        for ely in range(nely):
            dofs = element_dofs(elx, ely, nelx, nely)
            assert len(set(dofs.tolist())) == 8
            assert dofs.min() >= 0 and dofs.max() < n


def test_adjacent_elements_share_four_dofs():
    nelx, nely = 3, 3
    center = set(element_dofs(1, 1, nelx, nely).tolist())
    for elx, ely in [(0, 1), (2, 1), (1, 0), (1, 2)]:
        assert len(center & set(element_dofs(elx, ely, nelx, nely).tolist())) == 4
    assert len(center & set(element_dofs(0, 0, nelx, nely).tolist())) == 2


def test_element_dof_table_matches_scalar_version():
    nelx, nely = 5, 3
    table = element_dof_table(nelx, nely)
    assert table.shape == (nelx * nely, 8)
    for elx in range(nelx):
        for ely in range(nely):
            np.testing.assert_array_equal(
                table[element_index(elx, ely, nely)], element_dofs(elx, ely, nelx, nely)
            )


def test_index_helpers():
    assert total_dofs(60, 20) == 2 * 61 * 21
    assert node_index(2, 3, 4) == 13
    assert element_index(2, 3, 4) == 11
