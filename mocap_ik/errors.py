"""Exception types raised by the IK core."""
from __future__ import annotations


class IKError(Exception):
    """Base class for all mocap_ik errors."""


class ConfigurationError(IKError, ValueError):
    """A task names something the model or the trial data cannot resolve."""


class Interrupted(IKError):
    """Evaluation was asked to stop through the cooperative interrupt flag."""
