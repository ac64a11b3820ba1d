"""Decode NEXRAD Level II archive files into elevations, radials and gates."""

from .decode import *  # noqa: F401,F403
from .exceptions import *  # noqa: F401,F403
from .model import *  # noqa: F401,F403
from ._tools import IOBuffer, reverse_endian  # noqa: F401
from . import decode, exceptions, model

__all__ = decode.__all__ + exceptions.__all__ + model.__all__ + ['IOBuffer', 'reverse_endian']

__version__ = '0.1.0'
