"""
Running power model.

Basic power = horizontal + vertical (+ downhill braking penalty):
  horizontal = mass × ECOR × speed
  vertical   = mass × g × Δh / Δt                      (uphill only)
  downhill   = horizontal × penalty(|Δh| / (speed × Δt))

apply_sensor_fusion() then corrects the physics estimate with running form
(cadence, vertical oscillation, ground contact time) and, within ±15%, with
how hard the heart is working for that power.
"""
import logging
from typing import Optional

from runtracker.models.profile import DEFAULT_ECOR, UserProfile

logger = logging.getLogger(__name__)

GRAVITY = 9.81

# (upper grade bound, penalty): the first bound the grade falls under wins
_DOWNHILL_PENALTIES = [
    (0.05, 0.05),
    (0.10, 0.10),
    (0.15, 0.20),
]
_DOWNHILL_FLAT_GRADE = 0.01
_DOWNHILL_MAX_PENALTY = 0.30

OPTIMAL_CADENCE_SPM = (160, 200)
MAX_VERTICAL_OSCILLATION_CM = 12.0
MAX_GROUND_CONTACT_MS = 300.0
HR_CORRECTION_CAP = 0.15

RESTING_HR = 70.0
FTP_WATTS_PER_KG = 3.5


def downhill_penalty_factor(grade: float) -> float:
    """Extra fraction of horizontal power spent braking on a descent of `grade`."""
    if grade <= _DOWNHILL_FLAT_GRADE:
        return 0.0
    for upper, penalty in _DOWNHILL_PENALTIES:
        if grade < upper:
            return penalty
    return _DOWNHILL_MAX_PENALTY


class PowerCalculator:
    """Estimates running power for one runner."""

    def __init__(self, profile: UserProfile):
        self.profile = profile

    def calculate_power(
        self,
        speed: float,
        elevation_change: float,
        time_interval: float,
        use_custom_economy: bool = True,
    ) -> float:
        """
        Args:
            speed: m/s. Negative values are treated as a sign error (abs).
            elevation_change: metres over the interval, positive = uphill.
            time_interval: seconds. Must be positive.
            use_custom_economy: use the profile's ECOR instead of the default 0.98.

        Returns:
            Power in watts, 0.0 if the interval is not positive.
        """
        if time_interval <= 0:
            logger.warning("Invalid time interval for power calculation: %s", time_interval)
            return 0.0
        if speed < 0:
            logger.warning("Negative speed %.2f m/s in power calculation, using absolute value", speed)
            speed = abs(speed)

        mass = self.profile.weight_kg
        ecor = self.profile.economy_coefficient() if use_custom_economy else DEFAULT_ECOR

        horizontal = mass * ecor * speed
        vertical = mass * GRAVITY * elevation_change / time_interval if elevation_change > 0 else 0.0

        downhill = 0.0
        if elevation_change < 0 and speed > 0:
            grade = abs(elevation_change) / (speed * time_interval)
            downhill = horizontal * downhill_penalty_factor(grade)

        return horizontal + vertical + downhill

    def calculate_vertical_power(self, vertical_speed: float) -> float:
        """Climbing power from vertical speed (m/s); descending earns nothing."""
        if vertical_speed <= 0:
            return 0.0
        return self.profile.weight_kg * GRAVITY * vertical_speed

    def calculate_acceleration_power(self, speed: float, acceleration: float) -> float:
        """Power spent accelerating (F·v); deceleration earns nothing."""
        if acceleration <= 0:
            return 0.0
        return self.profile.weight_kg * acceleration * abs(speed)

    @staticmethod
    def calculate_calories(power: float) -> float:
        """kcal per hour at a constant power output (1 W = 3.6 kJ/h, 1 kcal = 4.184 kJ)."""
        return power * 3.6 / 4.184

    def apply_sensor_fusion(
        self,
        basic_power: float,
        cadence: Optional[int] = None,
        heart_rate: Optional[int] = None,
        vertical_oscillation: Optional[float] = None,
        ground_contact_time: Optional[float] = None,
    ) -> float:
        """
        Adjust a physics-based power estimate with form and heart-rate data.

        Form penalties multiply independently:
          cadence < 160 spm: +0.3% per spm below; > 200 spm: +0.2% per spm above
          vertical oscillation > 12 cm: +1% per cm above
          ground contact time > 300 ms: +0.05% per ms above

        The heart-rate correction compares observed HR with the HR the model
        expects for basic_power and moves the estimate by at most ±15%.
        """
        efficiency = 1.0

        if cadence is not None and cadence > 0:
            low, high = OPTIMAL_CADENCE_SPM
            if cadence < low:
                efficiency *= 1.0 + (low - cadence) * 0.003
            elif cadence > high:
                efficiency *= 1.0 + (cadence - high) * 0.002

        if vertical_oscillation is not None and vertical_oscillation > MAX_VERTICAL_OSCILLATION_CM:
            efficiency *= 1.0 + (vertical_oscillation - MAX_VERTICAL_OSCILLATION_CM) * 0.01

        if ground_contact_time is not None and ground_contact_time > MAX_GROUND_CONTACT_MS:
            efficiency *= 1.0 + (ground_contact_time - MAX_GROUND_CONTACT_MS) * 0.0005

        baseline = basic_power * efficiency

        if heart_rate is None or heart_rate <= 0 or basic_power <= 0:
            return baseline

        expected = self.estimate_heart_rate(basic_power)
        if expected <= 0:
            return baseline

        ratio = heart_rate / expected
        correction = 1.0
        if ratio > 1.2:
            correction = 1.0 + (ratio - 1.0) * 0.5
        elif ratio < 0.8:
            correction = 1.0 - (1.0 - ratio) * 0.5

        correction = min(1.0 + HR_CORRECTION_CAP, max(1.0 - HR_CORRECTION_CAP, correction))
        return baseline * correction

    def estimate_heart_rate(self, power: float) -> float:
        """
        Expected HR for a power output.

        %FTP ≤ 0.85: HR reserve used = 0.9 × %FTP
        above:       HR reserve used = 0.765 + 1.5 × (%FTP − 0.85), capped at 100%
        """
        max_hr = 220.0 - self.profile.age
        reserve = max_hr - RESTING_HR
        ftp = self.profile.weight_kg * FTP_WATTS_PER_KG
        if ftp <= 0:
            return 0.0

        pct_ftp = power / ftp
        if pct_ftp <= 0.85:
            pct_reserve = pct_ftp * 0.9
        else:
            pct_reserve = 0.765 + (pct_ftp - 0.85) * 1.5
        pct_reserve = min(1.0, pct_reserve)

        return RESTING_HR + reserve * pct_reserve
