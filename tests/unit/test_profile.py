"""Tests for the runner profile and its running economy."""
import pytest

from runtracker.config import Settings
from runtracker.models.profile import DEFAULT_ECOR, UserProfile


class TestEconomyCoefficient:
    def test_default(self):
        assert UserProfile().economy_coefficient() == DEFAULT_ECOR

    def test_custom_value_wins(self):
        profile = UserProfile(biological_sex="female", age=60, custom_economy=1.05)
        assert profile.economy_coefficient() == 1.05

    def test_female_adjustment(self):
        profile = UserProfile(biological_sex="female")
        assert profile.economy_coefficient() == pytest.approx(0.98 * 1.03)

    def test_age_over_50(self):
        assert UserProfile(age=60).economy_coefficient() == pytest.approx(0.98 * 1.03)

    def test_heavy_runner(self):
        assert UserProfile(weight_kg=90).economy_coefficient() == pytest.approx(0.98 * 1.02)

    def test_light_runner(self):
        assert UserProfile(weight_kg=45).economy_coefficient() == pytest.approx(0.98 * 0.995)


class TestProfile:
    def test_bmi(self):
        assert UserProfile(weight_kg=70, height_cm=175).bmi() == pytest.approx(22.86, abs=0.01)

    def test_from_settings(self):
        settings = Settings(
            profile_weight_kg=62.0,
            profile_age=41,
            profile_biological_sex="female",
            _env_file=None,
        )
        profile = UserProfile.from_settings(settings)
        assert profile.weight_kg == 62.0
        assert profile.age == 41
        assert profile.biological_sex == "female"
        assert profile.custom_economy is None
