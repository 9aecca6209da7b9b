"""
Acquisition engine for the calorimeter host.

The subpackage holds the configuration model, the paced sampler, the
convergence, injection and integration stages, and the instrument
collaborators they read from.
"""

from .config import CalorimeterConfig, DetectionConfig, SamplingConfig, load_config
from .convergence import Baseline, ConvergenceDetector, ConvergenceState
from .injection import await_injection
from .instruments import Instrument, ReplayInstrument, SerialNanovoltmeter
from .integration import AreaIntegrator, PulseRecord
from .recording import SampleLog
from .sampler import CancelToken, Sample, TimedSampler, Window

__all__ = [
    "CalorimeterConfig",
    "DetectionConfig",
    "SamplingConfig",
    "load_config",
    "Baseline",
    "ConvergenceDetector",
    "ConvergenceState",
    "await_injection",
    "Instrument",
    "ReplayInstrument",
    "SerialNanovoltmeter",
    "AreaIntegrator",
    "PulseRecord",
    "SampleLog",
    "CancelToken",
    "Sample",
    "TimedSampler",
    "Window",
]
