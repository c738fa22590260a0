"""Type definitions for the hmdcm package."""

from typing import Literal

import numpy as np
from numpy.typing import NDArray

# Ragged per-occasion, per-item parameter containers
ItemParameterList = list[list[NDArray[np.float64]]]

# Measurement rule literals
MeasurementModel = Literal["general", "conjunctive", "dina"]

# Initialization literals
InitMethod = Literal["uniform", "random"]
