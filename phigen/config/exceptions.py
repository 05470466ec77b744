# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Configuration exceptions.

Both the YAML config layer and the per-request GenerationConfig raise from
this hierarchy, so a caller can catch ConfigError once and know the request
never reached the model.
"""


class ConfigError(Exception):
    """Base for all configuration errors."""


class ConfigLoadError(ConfigError):
    """Raised when a config file cannot be read from disk or parsed as YAML."""


class ConfigValidationError(ConfigError):
    """
    Raised when configuration parses fine but its values are unusable.

    Covers schema violations in YAML files (missing fields, wrong types,
    unknown keys) as well as invalid sampling parameters such as a top_p
    outside (0, 1] or a negative temperature.
    """
