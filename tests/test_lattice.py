"""Tests for the lattice data and the implied-tree calibrator."""

from datetime import datetime

import numpy as np
import pytest

from conftest import EUR_USD, SPOT, VAL_DATE_TIME, make_rates, make_vanilla, make_vols
from fxtree import (
    CalibrationError,
    ConfigurationError,
    CurrencyPair,
    FlatFxVolatilities,
    ImmutableRatesProvider,
    ImpliedTrinomialTreeCalibrator,
    InterpolatedZeroRateCurve,
    LatticeData,
    SviFxVolatilities,
    SviSlice,
)


def _one_step_lattice(**overrides):
    kwargs = dict(
        number_of_steps=1,
        spot=1.0,
        time=[0.0, 0.5],
        state_value=[np.array([1.0]), np.array([0.9, 1.0, 1.1])],
        transition_probability=[np.array([[0.25, 0.5, 0.25]])],
        discount_factor=[0.99],
    )
    kwargs.update(overrides)
    return LatticeData(**kwargs)


def _check_valid(lattice):
    for i in range(lattice.number_of_steps):
        probs = lattice.probability_at_layer(i)
        assert np.all(probs >= 0.0)
        assert np.all(probs <= 1.0)
        assert np.allclose(probs.sum(axis=1), 1.0, atol=1e-9)


# ---------------------------------------------------------------------------
# LatticeData
# ---------------------------------------------------------------------------
class TestLatticeData:
    def test_accessors(self):
        lat = _one_step_lattice()
        assert lat.time_to_expiry == 0.5
        assert lat.discount_factor_at_layer(0) == 0.99
        assert lat.state_value_at_layer(1).shape == (3,)
        assert lat.probability_at_layer(0).shape == (1, 3)

    def test_arrays_are_read_only(self):
        lat = _one_step_lattice()
        with pytest.raises(ValueError):
            lat.state_value_at_layer(1)[0] = 5.0

    def test_wrong_layer_size_rejected(self):
        with pytest.raises(ConfigurationError):
            _one_step_lattice(state_value=[np.array([1.0]), np.array([0.9, 1.1])])

    def test_probabilities_must_sum_to_one(self):
        with pytest.raises(ConfigurationError):
            _one_step_lattice(transition_probability=[np.array([[0.3, 0.5, 0.3]])])

    def test_negative_probability_rejected(self):
        with pytest.raises(ConfigurationError):
            _one_step_lattice(transition_probability=[np.array([[-0.1, 0.6, 0.5]])])

    def test_time_must_start_at_zero(self):
        with pytest.raises(ConfigurationError):
            _one_step_lattice(time=[0.1, 0.5])

    def test_zero_steps_rejected(self):
        with pytest.raises(ConfigurationError):
            _one_step_lattice(number_of_steps=0)

    def test_default_geometry_scales_with_spot(self):
        lat = _one_step_lattice(spot=2.0, state_value=[np.array([2.0]), np.array([1.8, 2.0, 2.2])])
        assert np.allclose(lat.state_derivative_at_layer(1), [0.9, 1.0, 1.1])
        assert lat.probability_derivative_at_layer(0) is None

    def test_probability_derivative_shape_checked(self):
        with pytest.raises(ConfigurationError):
            _one_step_lattice(transition_probability_derivative=[np.zeros((3, 3))])

    def test_local_volatility_of_symmetric_step(self):
        lat = _one_step_lattice(
            state_value=[np.array([1.0]), np.exp([-0.1, 0.0, 0.1])],
        )
        # variance 0.5 * 0.01 over half a year
        assert lat.local_volatility_at_layer(0)[0] == pytest.approx(0.1, rel=1e-12)


# ---------------------------------------------------------------------------
# Calibrator
# ---------------------------------------------------------------------------
class TestCalibrator:
    def test_steps_must_be_positive(self):
        with pytest.raises(ConfigurationError):
            ImpliedTrinomialTreeCalibrator(0)

    def test_grid_shape(self, rates, vols):
        lat = ImpliedTrinomialTreeCalibrator(20).calibrate(make_vanilla(1.10), rates, vols)
        assert lat.number_of_steps == 20
        assert lat.time.shape == (21,)
        assert lat.time[0] == 0.0
        assert lat.time_to_expiry == pytest.approx(1.0, abs=1e-12)
        assert lat.spot == SPOT
        assert lat.state_value_at_layer(20).shape == (41,)
        assert lat.state_value_at_layer(7)[7] == pytest.approx(SPOT, rel=1e-14)

    def test_flat_vol_lattice_is_valid(self, carry_rates, vols):
        lat = ImpliedTrinomialTreeCalibrator(51).calibrate(make_vanilla(1.10), carry_rates, vols)
        _check_valid(lat)

    def test_smile_lattice_is_valid(self, carry_rates):
        svi = SviFxVolatilities(
            EUR_USD,
            VAL_DATE_TIME,
            {
                0.5: SviSlice(a=0.004, b=0.02, rho=-0.3, m=0.0, sigma=0.2, expiry=0.5),
                1.0: SviSlice(a=0.008, b=0.04, rho=-0.3, m=0.0, sigma=0.2, expiry=1.0),
            },
        )
        lat = ImpliedTrinomialTreeCalibrator(40).calibrate(make_vanilla(1.05), carry_rates, svi)
        _check_valid(lat)

    def test_nodes_match_forwards(self, carry_rates, vols):
        lat = ImpliedTrinomialTreeCalibrator(30).calibrate(make_vanilla(1.10), carry_rates, vols)
        eur = carry_rates.discount_factors("EUR")
        usd = carry_rates.discount_factors("USD")
        for i in range(lat.number_of_steps):
            t0, t1 = lat.time[i], lat.time[i + 1]
            growth = (eur.discount_factor(t1) / eur.discount_factor(t0)) / (
                usd.discount_factor(t1) / usd.discount_factor(t0)
            )
            node = lat.state_value_at_layer(i)
            nxt = lat.state_value_at_layer(i + 1)
            probs = lat.probability_at_layer(i)
            expected = probs[:, 0] * nxt[:-2] + probs[:, 1] * nxt[1:-1] + probs[:, 2] * nxt[2:]
            assert np.allclose(expected, node * growth, rtol=1e-10)

    def test_discount_factors_compound_to_expiry(self, carry_rates, vols):
        lat = ImpliedTrinomialTreeCalibrator(25).calibrate(make_vanilla(1.10), carry_rates, vols)
        assert np.prod(lat.discount_factor) == pytest.approx(np.exp(-0.03), rel=1e-12)

    def test_strike_sits_on_a_node(self, rates, vols):
        lat = ImpliedTrinomialTreeCalibrator(101).calibrate(make_vanilla(1.10), rates, vols)
        terminal = lat.state_value_at_layer(101)
        assert np.min(np.abs(terminal - 1.10)) <= 1e-12 * 1.10

    def test_flat_vol_local_volatility(self, rates, vols):
        lat = ImpliedTrinomialTreeCalibrator(50).calibrate(make_vanilla(1.10), rates, vols)
        layer = 25
        lv = lat.local_volatility_at_layer(layer)
        assert np.all(np.isfinite(lv))
        assert 0.05 < lv[layer] < 0.20

    def test_aligned_grid_records_spot_sensitivity(self, carry_rates, vols):
        n = 51
        lat = ImpliedTrinomialTreeCalibrator(n).calibrate(make_vanilla(1.30), carry_rates, vols)
        # strike above spot: the grid tightens as spot rises
        assert lat.space_step_derivative < 0.0
        terminal = lat.state_value_at_layer(n)
        on_strike = int(np.argmin(np.abs(terminal - 1.30)))
        assert lat.state_derivative_at_layer(n)[on_strike] == pytest.approx(0.0, abs=1e-10)
        for i in range(n):
            deriv = lat.probability_derivative_at_layer(i)
            assert deriv.shape == lat.probability_at_layer(i).shape
            assert np.all(np.isfinite(deriv))
            assert np.allclose(deriv.sum(axis=1), 0.0, atol=1e-6)

    def test_spot_strike_needs_no_spot_sensitivity(self, carry_rates, vols):
        lat = ImpliedTrinomialTreeCalibrator(51).calibrate(make_vanilla(SPOT), carry_rates, vols)
        assert lat.space_step_derivative == 0.0
        assert lat.transition_probability_derivative is None

    def test_spot_sensitivity_can_be_skipped(self, carry_rates, vols):
        calibrator = ImpliedTrinomialTreeCalibrator(51)
        full = calibrator.calibrate(make_vanilla(1.30), carry_rates, vols)
        bare = calibrator.calibrate(make_vanilla(1.30), carry_rates, vols, with_derivatives=False)
        assert bare.transition_probability_derivative is None
        assert bare.space_step_derivative == 0.0
        for i in range(51):
            assert np.array_equal(bare.probability_at_layer(i), full.probability_at_layer(i))

    def test_zero_expiry_is_degenerate(self, rates):
        vols = make_vols(valuation_date_time=datetime(2025, 1, 14))
        rates = make_rates(valuation_date=datetime(2025, 1, 14).date())
        lat = ImpliedTrinomialTreeCalibrator(5).calibrate(make_vanilla(1.10), rates, vols)
        assert lat.time_to_expiry == 0.0
        assert np.all(lat.state_value_at_layer(5) == SPOT)
        assert np.all(lat.probability_at_layer(3)[:, 1] == 1.0)
        assert np.all(lat.discount_factor == 1.0)

    def test_expired_option_rejected(self, rates):
        vols = make_vols(valuation_date_time=datetime(2025, 6, 1))
        with pytest.raises(ConfigurationError):
            ImpliedTrinomialTreeCalibrator(5).calibrate(make_vanilla(1.10), rates, vols)

    def test_uncovered_pair_rejected(self, rates):
        vols = FlatFxVolatilities(CurrencyPair("GBP", "USD"), VAL_DATE_TIME, 0.1)
        with pytest.raises(ConfigurationError):
            ImpliedTrinomialTreeCalibrator(5).calibrate(make_vanilla(1.10), rates, vols)

    def test_missing_curve_rejected(self, vols):
        rates = ImmutableRatesProvider(
            VAL_DATE_TIME.date(),
            {"USD": InterpolatedZeroRateCurve.flat("USD-DSC", 0.0)},
            {EUR_USD: SPOT},
        )
        with pytest.raises(ConfigurationError):
            ImpliedTrinomialTreeCalibrator(5).calibrate(make_vanilla(1.10), rates, vols)

    def test_forward_outside_children_raises(self):
        # one step, tiny vol and a 500% rate gap: the node forward cannot be matched
        rates = make_rates(usd_rate=5.0)
        vols = make_vols(level=0.01)
        with pytest.raises(CalibrationError) as excinfo:
            ImpliedTrinomialTreeCalibrator(1).calibrate(make_vanilla(SPOT), rates, vols)
        assert excinfo.value.step == 0
