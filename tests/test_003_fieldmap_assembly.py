import os

import numpy as np
import pytest

from rfqfield.export import export_vtk, fieldmap_to_polydata
from rfqfield.fieldmap import (CellFieldMap, HEADER, assemble, combine_fieldmaps,
                               fill_fieldmap_from_quadrant, load_fieldmap,
                               read_fieldmap, write_fieldmap)


def quadrant_map(z_values, x_values=(0., 1e-3), y_values=(0., 1e-3)):
    rows = []
    for z in z_values:
        for y in y_values:
            for x in x_values:
                rows.append([x, y, z, 10*x + 1, -10*y + 2, 3., 0., 0., 0.])
    return np.array(rows)


class TestMirroring:

    def test_single_sample(self):
        sample = np.array([[1e-3, 2e-3, 0.01, 10., 20., 30., 0., 0., 0.]])
        full = fill_fieldmap_from_quadrant(sample)

        assert full.shape == (4, 9)
        expected = {
            (-1e-3, -2e-3): (-10., -20., 30.),
            (1e-3, -2e-3): (10., -20., 30.),
            (-1e-3, 2e-3): (-10., 20., 30.),
            (1e-3, 2e-3): (10., 20., 30.),
        }
        for row in full:
            assert tuple(row[3:6]) == expected[(row[0], row[1])]
            assert row[2] == 0.01
        assert np.all(full[:, 6:] == 0)

    def test_on_axis(self):
        sample = np.array([[0., 0., 0.01, 5., 5., 30., 0., 0., 0.]])
        full = fill_fieldmap_from_quadrant(sample)
        assert full.shape == (1, 9)
        assert full[0, 3] == 0 and full[0, 4] == 0
        assert full[0, 5] == 30.

    def test_on_mirror_plane(self):
        sample = np.array([[0., 1e-3, 0.01, 0., 5., 1., 0., 0., 0.]])
        full = fill_fieldmap_from_quadrant(sample)
        assert full.shape == (2, 9)
        assert sorted(full[:, 1]) == [-1e-3, 1e-3]
        assert sorted(full[:, 4]) == [-5., 5.]

    def test_grid(self):
        quadrant = quadrant_map([0., 1e-3])
        full = fill_fieldmap_from_quadrant(quadrant)
        # 3 x 3 transverse points per plane
        assert full.shape == (18, 9)
        # sorted by z, then y, then x
        assert np.all(np.diff(full[:, 2]) >= 0)
        assert np.array_equal(full[:3, 0], [-1e-3, 0., 1e-3])

    def test_mirroring_twice(self):
        sample = np.array([[1e-3, 2e-3, 0.01, 10., 20., 30., 0., 0., 0.]])
        once = fill_fieldmap_from_quadrant(sample)
        twice = fill_fieldmap_from_quadrant(once)
        assert twice.shape == (4, 9)
        assert np.array_equal(twice, once)

        full = fill_fieldmap_from_quadrant(quadrant_map([0., 1e-3]))
        assert np.array_equal(fill_fieldmap_from_quadrant(full), full)

    def test_input_not_modified(self):
        quadrant = quadrant_map([0.])
        copy = quadrant.copy()
        fill_fieldmap_from_quadrant(quadrant)
        assert np.array_equal(quadrant, copy)


class TestAssembly:

    def test_ascending_cells(self):
        maps = [CellFieldMap(3, quadrant_map([3e-3])),
                CellFieldMap(1, quadrant_map([1e-3])),
                CellFieldMap(2, quadrant_map([2e-3]))]
        fieldmap = load_fieldmap(maps)
        assert fieldmap.shape == (12, 9)
        assert np.array_equal(np.unique(fieldmap[:, 2]), [1e-3, 2e-3, 3e-3])
        assert np.all(np.diff(fieldmap[:, 2]) >= 0)

    def test_no_deduplication(self):
        maps = [CellFieldMap(1, quadrant_map([1e-3])), CellFieldMap(2, quadrant_map([1e-3]))]
        assert load_fieldmap(maps).shape == (8, 9)

    def test_four_quadrant_is_not_mirrored(self):
        maps = [CellFieldMap(1, quadrant_map([0.], x_values=(-1e-3, 0., 1e-3)))]
        fieldmap = assemble(maps, four_quad=True)
        assert np.array_equal(fieldmap, maps[0].data)

    def test_four_quadrant_keeps_axis_field(self):
        maps = [CellFieldMap(1, quadrant_map([0.], x_values=(-1e-3, 0., 1e-3)))]
        fieldmap = assemble(maps, four_quad=True)
        on_axis = fieldmap[(fieldmap[:, 0] == 0) & (fieldmap[:, 1] == 0)]
        assert len(on_axis) == 1
        assert on_axis[0, 3] == 1. and on_axis[0, 4] == 2.

    def test_quarter_is_mirrored(self):
        maps = [CellFieldMap(1, quadrant_map([0.]))]
        fieldmap = assemble(maps)
        assert fieldmap.shape == (9, 9)
        on_axis = fieldmap[(fieldmap[:, 0] == 0) & (fieldmap[:, 1] == 0)]
        assert on_axis[0, 3] == 0 and on_axis[0, 4] == 0

    def test_invalid_shape(self):
        with pytest.raises(ValueError):
            CellFieldMap(1, np.zeros((4, 6)))


class TestFieldMapFiles:

    def test_write_and_read(self, tmp_path):
        fieldmap = fill_fieldmap_from_quadrant(quadrant_map([0., 1e-3]))
        filename = write_fieldmap(str(tmp_path / 'map.txt'), fieldmap, newline='\n')

        with open(filename) as fh:
            assert fh.readline().rstrip('\n') == HEADER
        assert np.allclose(read_fieldmap(filename), fieldmap, rtol=1e-9)

    def test_combine(self, tmp_path):
        first = tmp_path / 'matching.txt'
        second = tmp_path / 'rfq.txt'
        write_fieldmap(str(first), quadrant_map([0., 1e-3]))
        write_fieldmap(str(second), quadrant_map([0., 1e-3, 2e-3]))
        output = str(tmp_path / 'combined.txt')

        combined = combine_fieldmaps([(str(first), 0.), (str(second), 1e-3)], output)
        assert combined.shape == (20, 9)
        assert os.path.exists(output)

        combined = combine_fieldmaps([(str(first), 0.), (str(second), 1e-3)], output,
                                     skip_zero=True)
        assert combined.shape == (12, 9)
        assert np.allclose(np.unique(combined[:, 2]), [1e-3, 2e-3, 3e-3])

    def test_combine_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            combine_fieldmaps([(str(tmp_path / 'missing.txt'), 0.)],
                              str(tmp_path / 'out.txt'))


class TestExport:

    def test_polydata(self):
        fieldmap = fill_fieldmap_from_quadrant(quadrant_map([0., 1e-3]))
        cloud = fieldmap_to_polydata(fieldmap)
        assert cloud.n_points == len(fieldmap)
        assert cloud.point_data['E'].shape == (len(fieldmap), 3)
        assert np.allclose(cloud.point_data['|E|'], np.linalg.norm(fieldmap[:, 3:6], axis=1))

    def test_vtk_file(self, tmp_path):
        filename = export_vtk(CellFieldMap(1, quadrant_map([0.])), str(tmp_path / 'map.vtk'))
        assert os.path.exists(filename)
