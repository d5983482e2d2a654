"""
GPS accuracy validation: Circular Error Probable from reported accuracy radii.

CEP50 is the median horizontal accuracy; CEP95 the 95th-percentile value
(nearest-rank). Used to judge whether a phone's GPS is good enough to trust
before relying on it for distance.
"""
import math
from dataclasses import dataclass
from statistics import median
from typing import Iterable, Optional


@dataclass
class CepResult:
    cep50_m: float
    cep95_m: float
    samples: int


def circular_error_probable(accuracies_m: Iterable[float]) -> Optional[CepResult]:
    """
    Returns:
        CepResult, or None when no non-negative accuracy readings are given.
    """
    values = sorted(a for a in accuracies_m if a is not None and a >= 0)
    if not values:
        return None
    index95 = max(0, math.ceil(len(values) * 0.95) - 1)
    return CepResult(cep50_m=median(values), cep95_m=values[index95], samples=len(values))
