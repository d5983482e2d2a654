"""Runner profile: the physiological inputs of the power model."""
from dataclasses import dataclass
from typing import Optional

DEFAULT_ECOR = 0.98  # J/kg/m, flat-ground energy cost of running


@dataclass
class UserProfile:
    """Read-only input to PowerCalculator. Never owned by a session."""

    weight_kg: float = 70.0
    height_cm: float = 175.0
    age: int = 30
    biological_sex: str = "male"  # "male", "female", "other"
    custom_economy: Optional[float] = None

    @classmethod
    def from_settings(cls, settings) -> "UserProfile":
        return cls(
            weight_kg=settings.profile_weight_kg,
            height_cm=settings.profile_height_cm,
            age=settings.profile_age,
            biological_sex=settings.profile_biological_sex,
            custom_economy=settings.profile_custom_economy,
        )

    def economy_coefficient(self) -> float:
        """
        ECOR in J/kg/m.

        Uses the custom value when set. Otherwise starts from 0.98 and adjusts:
          - female: +3%
          - age over 50: +0.3% per year
          - weight over 80 kg: +0.2% per kg; under 50 kg: -0.1% per kg
        """
        if self.custom_economy is not None:
            return self.custom_economy

        ecor = DEFAULT_ECOR
        if self.biological_sex == "female":
            ecor *= 1.03
        if self.age > 50:
            ecor *= 1.0 + (self.age - 50) * 0.003
        if self.weight_kg > 80:
            ecor *= 1.0 + (self.weight_kg - 80) * 0.002
        elif self.weight_kg < 50:
            ecor *= 1.0 - (50 - self.weight_kg) * 0.001
        return ecor

    def bmi(self) -> float:
        height_m = self.height_cm / 100.0
        return self.weight_kg / (height_m * height_m)
