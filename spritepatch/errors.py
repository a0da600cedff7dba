from __future__ import annotations


class SpritePatchError(RuntimeError):
    """Base class for failures surfaced to the caller."""


class ConfigurationError(SpritePatchError):
    """Missing or unusable configuration, e.g. detector credentials."""


class DetectorError(SpritePatchError):
    """The region detector request failed."""


class DetectorParseError(DetectorError):
    """The region detector returned something that is not a valid analysis."""


class DecodeFailure(SpritePatchError):
    """The sprite sheet could not be read or decoded."""


class AlignmentCancelled(SpritePatchError):
    """Raised at a yield point once the abort flag has been set."""
