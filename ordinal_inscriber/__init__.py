"""Ordinal Inscriber: stage files into an ord container and inscribe them."""

from .cache import CacheError, CacheManager
from .commands import (
    CommandValidationError,
    InscribeOptions,
    build_bitmap_command,
    build_brc20_command,
    build_inscribe_command,
    build_sns_command,
    estimate_fee,
)
from .config import AppConfig, ConfigurationError, load_app_config
from .environment import EnvironmentResolver
from .parsing import InscribeOutcome, parse_inscribe_output
from .probe import Resolution, ResolutionError
from .stager import FileStager, StagingError, optimize_image
from .status import InscriptionNotFound, InscriptionState, InscriptionStatusStore

__all__ = [
    "AppConfig",
    "ConfigurationError",
    "load_app_config",
    "EnvironmentResolver",
    "Resolution",
    "ResolutionError",
    "FileStager",
    "StagingError",
    "optimize_image",
    "CommandValidationError",
    "InscribeOptions",
    "build_inscribe_command",
    "build_brc20_command",
    "build_bitmap_command",
    "build_sns_command",
    "estimate_fee",
    "InscribeOutcome",
    "parse_inscribe_output",
    "CacheError",
    "CacheManager",
    "InscriptionNotFound",
    "InscriptionState",
    "InscriptionStatusStore",
]
