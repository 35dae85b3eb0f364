"""Tests for the ResponseFamily protocol, output scales and the registry."""

import numpy as np
import pytest
import statsmodels.api as sm

from merintervals.exceptions import UnsupportedModelKind, UnsupportedOption
from merintervals.families import (
    LINEAR_SCALE,
    RESPONSE_SCALE,
    LinearFamily,
    LogisticFamily,
    ResponseFamily,
    register_family,
    resolve_family,
    resolve_scale,
)

# ------------------------------------------------------------------ #
# Fixtures
# ------------------------------------------------------------------ #


@pytest.fixture()
def eta(rng):
    return rng.standard_normal((4, 200))


# ------------------------------------------------------------------ #
# Output scales
# ------------------------------------------------------------------ #


class TestResolveScale:
    @pytest.mark.parametrize("name", ["linear_prediction", "linear", "link", " LINK "])
    def test_linear_aliases(self, name):
        assert resolve_scale(name) == LINEAR_SCALE

    @pytest.mark.parametrize("name", ["probability", "response", "Probability"])
    def test_response_aliases(self, name):
        assert resolve_scale(name) == RESPONSE_SCALE

    def test_unknown_scale_raises(self):
        with pytest.raises(UnsupportedOption, match="Unknown output type"):
            resolve_scale("odds")


# ------------------------------------------------------------------ #
# Protocol conformance
# ------------------------------------------------------------------ #


class TestProtocolConformance:
    @pytest.mark.parametrize("cls", [LinearFamily, LogisticFamily])
    def test_isinstance_check(self, cls):
        assert isinstance(cls(), ResponseFamily)

    def test_names_and_links(self):
        assert (LinearFamily().name, LinearFamily().link) == ("linear", "identity")
        assert (LogisticFamily().name, LogisticFamily().link) == ("logistic", "logit")

    def test_resid_var_support(self):
        assert LinearFamily().supports_resid_var is True
        assert LogisticFamily().supports_resid_var is False


# ------------------------------------------------------------------ #
# LinearFamily
# ------------------------------------------------------------------ #


class TestLinearFamily:
    def test_no_noise_is_identity(self, eta):
        original = eta.copy()
        out = LinearFamily().transform(
            eta, scale=LINEAR_SCALE, include_resid_var=False, sigma2=1.0,
            rng=np.random.default_rng(0),
        )
        np.testing.assert_array_equal(out, original)

    def test_probability_scale_matches_linear(self, eta):
        fam = LinearFamily()
        a = fam.transform(eta.copy(), scale=LINEAR_SCALE, include_resid_var=True,
                          sigma2=2.0, rng=np.random.default_rng(3))
        b = fam.transform(eta.copy(), scale=RESPONSE_SCALE, include_resid_var=True,
                          sigma2=2.0, rng=np.random.default_rng(3))
        np.testing.assert_array_equal(a, b)

    def test_noise_has_residual_variance(self):
        zeros = np.zeros((1, 50_000))
        out = LinearFamily().transform(
            zeros, scale=LINEAR_SCALE, include_resid_var=True, sigma2=4.0,
            rng=np.random.default_rng(1),
        )
        assert out.var() == pytest.approx(4.0, rel=0.05)
        assert abs(out.mean()) < 0.05

    def test_noise_independent_per_cell(self):
        out = LinearFamily().transform(
            np.zeros((3, 1000)), scale=LINEAR_SCALE, include_resid_var=True,
            sigma2=1.0, rng=np.random.default_rng(2),
        )
        assert not np.allclose(out[0], out[1])
        assert abs(np.corrcoef(out[0], out[1])[0, 1]) < 0.15

    def test_validate_requires_sigma2(self):
        with pytest.raises(UnsupportedOption, match="sigma2=None"):
            LinearFamily().validate_options(LINEAR_SCALE, True, None)

    def test_validate_rejects_negative_sigma2(self):
        with pytest.raises(UnsupportedOption, match="finite"):
            LinearFamily().validate_options(LINEAR_SCALE, True, -1.0)

    def test_validate_without_noise_accepts_missing_sigma2(self):
        LinearFamily().validate_options(LINEAR_SCALE, False, None)


# ------------------------------------------------------------------ #
# LogisticFamily
# ------------------------------------------------------------------ #


class TestLogisticFamily:
    def test_probability_in_unit_interval(self, eta):
        out = LogisticFamily().transform(
            eta * 20, scale=RESPONSE_SCALE, include_resid_var=False, sigma2=None,
            rng=np.random.default_rng(0),
        )
        assert np.all((out >= 0.0) & (out <= 1.0))

    def test_inverse_link_is_sigmoid(self):
        np.testing.assert_allclose(
            LogisticFamily().inverse_link(np.array([0.0, np.log(3.0)])),
            [0.5, 0.75],
        )

    def test_linear_scale_untouched(self, eta):
        original = eta.copy()
        out = LogisticFamily().transform(
            eta, scale=LINEAR_SCALE, include_resid_var=False, sigma2=None,
            rng=np.random.default_rng(0),
        )
        np.testing.assert_array_equal(out, original)

    def test_resid_var_rejected(self):
        with pytest.raises(UnsupportedOption, match="include_resid_var=False"):
            LogisticFamily().validate_options(RESPONSE_SCALE, True, None)

    def test_validate_rejects_unknown_scale(self):
        with pytest.raises(UnsupportedOption):
            LogisticFamily().validate_options("odds", False, None)


# ------------------------------------------------------------------ #
# Registry and resolution
# ------------------------------------------------------------------ #


class TestRegistry:
    @pytest.mark.parametrize("name", ["linear", "gaussian", "identity", "Linear"])
    def test_linear_aliases(self, name):
        assert isinstance(resolve_family(name), LinearFamily)

    @pytest.mark.parametrize("name", ["logistic", "binomial", "logit"])
    def test_logistic_aliases(self, name):
        assert isinstance(resolve_family(name), LogisticFamily)

    def test_instance_passthrough(self):
        fam = LogisticFamily()
        assert resolve_family(fam) is fam

    def test_statsmodels_families(self):
        assert isinstance(resolve_family(sm.families.Gaussian()), LinearFamily)
        assert isinstance(resolve_family(sm.families.Binomial()), LogisticFamily)

    def test_statsmodels_poisson_rejected(self):
        with pytest.raises(UnsupportedModelKind, match="Poisson"):
            resolve_family(sm.families.Poisson())

    @pytest.mark.parametrize("link", ["Probit", "CLogLog", "Cauchy"])
    def test_statsmodels_non_logit_binomial_rejected(self, link):
        family = sm.families.Binomial(link=getattr(sm.families.links, link)())
        with pytest.raises(UnsupportedModelKind, match=link):
            resolve_family(family)

    def test_statsmodels_gaussian_log_rejected(self):
        family = sm.families.Gaussian(link=sm.families.links.Log())
        with pytest.raises(UnsupportedModelKind, match="Log"):
            resolve_family(family)

    def test_statsmodels_binomial_logit_accepted(self):
        assert isinstance(resolve_family(sm.families.Binomial()), LogisticFamily)

    def test_unknown_family_raises(self):
        with pytest.raises(UnsupportedModelKind, match="Unsupported model family"):
            resolve_family("poisson")

    def test_register_non_protocol_raises(self):
        with pytest.raises(TypeError, match="does not implement"):
            register_family("bad", int)

    def test_frozen_dataclass(self):
        with pytest.raises(AttributeError):
            LinearFamily().name = "other"  # type: ignore[misc]
