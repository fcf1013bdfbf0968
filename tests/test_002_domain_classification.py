import numpy as np
import pytest

from rfqfield import Logger
from rfqfield.cells import get_cell_parameters
from rfqfield.errors import ClassificationError
from rfqfield.geometry import (BoundingBox, Domain, DomainRole, MANDATORY_ROLES,
                               detect_four_quadrant, find_vane_extent)
from rfqfield.selections import (classify_domains, fallback_selections,
                                 find_airbag_domain, legacy_selections)

R0 = 3.5e-3
RHO = 3.1076e-3
BEAM_BOX_WIDTH = 3e-3


def build_cell(engine, window):
    engine.connect()
    for name, (value, unit) in window.as_parameters().items():
        engine.set_parameter(name, value, unit)
    engine.rebuild_geometry()
    return engine.enumerate_domains()


def check_roles(selections, engine, domains):
    for domain in domains:
        assert selections.role_of(domain.id) is engine.domain_role(domain.id)


class TestQuarterModel:

    def test_interior_cell(self, lengths, make_engine):
        engine = make_engine()
        window = get_cell_parameters(lengths, 4, cad_offset=-lengths[0])
        domains = build_cell(engine, window)
        assert len(domains) == 9

        selections = classify_domains(domains, window, BEAM_BOX_WIDTH, R0, RHO)
        check_roles(selections, engine, domains)
        for role in MANDATORY_ROLES:
            assert len(selections[role]) == 1
        assert not selections[DomainRole.END_FLANGE]

    def test_matching_section(self, lengths, make_engine):
        engine = make_engine()
        window = get_cell_parameters(lengths, 1, cad_offset=-lengths[0])
        domains = build_cell(engine, window)
        selections = classify_domains(domains, window, BEAM_BOX_WIDTH, R0, RHO)
        check_roles(selections, engine, domains)

    def test_end_flange(self, lengths, make_engine):
        engine = make_engine(end_flange=True)
        window = get_cell_parameters(lengths, len(lengths), cad_offset=-lengths[0])
        domains = build_cell(engine, window)
        assert len(domains) == 10

        selections = classify_domains(domains, window, BEAM_BOX_WIDTH, R0, RHO)
        check_roles(selections, engine, domains)
        assert len(selections[DomainRole.END_FLANGE]) == 1

    def test_groups(self, lengths, make_engine):
        engine = make_engine()
        window = get_cell_parameters(lengths, 4, cad_offset=-lengths[0])
        selections = classify_domains(build_cell(engine, window), window,
                                      BEAM_BOX_WIDTH, R0, RHO)
        groups = selections.groups()
        assert len(groups['allVanes']) == 4
        assert len(groups['horizontalVanes']) == 2
        assert len(groups['verticalVanes']) == 2
        assert len(groups['innerBeamBox']) == 3
        assert len(groups['airVolumes']) == 5
        assert groups['allTerminals'] == groups['allVanes']
        assert groups['endFlange'] == []

    def test_tolerates_rounding(self, lengths, make_engine):
        engine = make_engine()
        window = get_cell_parameters(lengths, 4, cad_offset=-lengths[0])
        domains = build_cell(engine, window)
        noisy = [Domain(d.id, BoundingBox(*(np.array(d.bounding_box.bounds) + 1e-12)))
                 for d in domains]
        selections = classify_domains(noisy, window, BEAM_BOX_WIDTH, R0, RHO)
        check_roles(selections, engine, domains)

    def test_missing_air_bag(self, lengths, make_engine):
        engine = make_engine()
        window = get_cell_parameters(lengths, 4, cad_offset=-lengths[0])
        domains = [d for d in build_cell(engine, window)
                   if engine.domain_role(d.id) is not DomainRole.AIR_BAG]

        with pytest.raises(ClassificationError) as excinfo:
            classify_domains(domains, window, BEAM_BOX_WIDTH, R0, RHO)
        assert excinfo.value.missing == [DomainRole.AIR_BAG]
        assert 'airBag' in str(excinfo.value)

    def test_duplicated_outer_beam_box(self, lengths, make_engine):
        engine = make_engine()
        window = get_cell_parameters(lengths, 4, cad_offset=-lengths[0])
        domains = build_cell(engine, window)
        outer = [d for d in domains if engine.domain_role(d.id) is DomainRole.OUTER_BEAM_BOX][0]
        domains.append(Domain(100, outer.bounding_box))

        with pytest.raises(ClassificationError) as excinfo:
            classify_domains(domains, window, BEAM_BOX_WIDTH, R0, RHO, has_end_flange=False)
        assert excinfo.value.duplicated == [DomainRole.OUTER_BEAM_BOX]

    def test_unclassifiable_domain(self, lengths, make_engine):
        engine = make_engine()
        window = get_cell_parameters(lengths, 4, cad_offset=-lengths[0])
        domains = build_cell(engine, window)
        domains.append(Domain(100, (-0.01, -0.005, -0.01, -0.005,
                                    window.selection_start, window.selection_end)))

        with pytest.raises(ClassificationError):
            classify_domains(domains, window, BEAM_BOX_WIDTH, R0, RHO, has_end_flange=False)


class TestFourQuadrantModel:

    def test_interior_cell(self, lengths, make_engine):
        engine = make_engine(four_quad=True)
        window = get_cell_parameters(lengths, 4, cad_offset=-lengths[0])
        domains = build_cell(engine, window)
        assert len(domains) == 13

        selections = classify_domains(domains, window, BEAM_BOX_WIDTH, R0, RHO, four_quad=True)
        check_roles(selections, engine, domains)
        for role in (DomainRole.VANE_TIP_X, DomainRole.VANE_BACK_X,
                     DomainRole.VANE_TIP_Y, DomainRole.VANE_BACK_Y):
            assert len(selections[role]) == 2

    def test_end_flange(self, lengths, make_engine):
        engine = make_engine(four_quad=True, end_flange=True)
        window = get_cell_parameters(lengths, len(lengths), cad_offset=-lengths[0])
        domains = build_cell(engine, window)
        selections = classify_domains(domains, window, BEAM_BOX_WIDTH, R0, RHO, four_quad=True)
        assert len(selections[DomainRole.END_FLANGE]) == 1

    def test_missing_mirrored_vane(self, lengths, make_engine):
        engine = make_engine(four_quad=True)
        window = get_cell_parameters(lengths, 4, cad_offset=-lengths[0])
        domains = build_cell(engine, window)
        negative_tip = [d for d in domains
                        if engine.domain_role(d.id) is DomainRole.VANE_TIP_X
                        and d.bounding_box.xmax < 0][0]
        domains.remove(negative_tip)

        with pytest.raises(ClassificationError) as excinfo:
            classify_domains(domains, window, BEAM_BOX_WIDTH, R0, RHO, four_quad=True)
        assert DomainRole.VANE_TIP_X in excinfo.value.missing

    def test_symmetry_detection(self, make_engine):
        quarter = make_engine()
        quarter.connect()
        full = make_engine(four_quad=True)
        full.connect()
        assert not detect_four_quadrant(quarter.get_bounding_box())
        assert detect_four_quadrant(full.get_bounding_box())
        assert detect_four_quadrant((-0.02, 0.02, -0.02, 0.02, 0, 1))
        assert not detect_four_quadrant((-0.001, 0.02, -0.02, 0.02, 0, 1))


class TestVaneExtent:

    def test_from_full_model(self, make_engine):
        engine = make_engine()
        engine.connect()
        zmin, zmax = find_vane_extent(engine.enumerate_domains(full_model=True))
        assert zmin == pytest.approx(engine.vane_start)
        assert zmax == pytest.approx(engine.vane_end)

    def test_no_vanes(self):
        assert find_vane_extent([Domain(1, (0, 1, 0, 1, 0, 1))]) == (None, None)


class TestLegacySelections:

    def test_fallback_airbag_numbers(self):
        logger = Logger(to_screen=0)

        selections = fallback_selections(250, 300, False, logger=logger)
        assert selections[DomainRole.AIR_BAG] == {8}
        assert selections[DomainRole.VANE_TIP_X] == {7}
        assert selections.legacy

        selections = fallback_selections(2, 300, True, logger=logger)
        assert selections[DomainRole.AIR_BAG] == {6}
        assert selections[DomainRole.VANE_BACK_Y] == {7}

        selections = fallback_selections(50, 300, False, logger=logger)
        assert selections[DomainRole.AIR_BAG] == {7}
        assert selections[DomainRole.VANE_TIP_Y] == {5}
        assert selections[DomainRole.VANE_BACK_Y] == {6}
        assert selections[DomainRole.VANE_TIP_X] == {8}
        assert selections[DomainRole.VANE_BACK_X] == {9}
        assert selections.ids(DomainRole.INNER_BEAM_BOX_FRONT, DomainRole.INNER_BEAM_BOX_MID,
                              DomainRole.INNER_BEAM_BOX_REAR,
                              DomainRole.OUTER_BEAM_BOX) == [1, 2, 3, 4]

        assert len(logger.warnings()) == 3

    def test_airbag_probe(self, lengths, make_engine):
        engine = make_engine(legacy_numbering=True)
        window = get_cell_parameters(lengths, 4, cad_offset=-lengths[0])
        build_cell(engine, window)
        assert find_airbag_domain(engine, window, 15e-3) == 7

    def test_airbag_probe_fails(self, lengths, make_engine):
        engine = make_engine()
        window = get_cell_parameters(lengths, 4, cad_offset=-lengths[0])
        build_cell(engine, window)
        # probes far outside the model hit no domain
        window.box_width = 1.
        logger = Logger(to_screen=0)

        with pytest.raises(ClassificationError):
            find_airbag_domain(engine, window, 1., logger=logger)
        assert len(logger.warnings()) == 4

        selections = legacy_selections(engine, window, len(lengths), 1.)
        assert selections[DomainRole.AIR_BAG] == {7}
