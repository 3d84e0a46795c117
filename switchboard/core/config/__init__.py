from switchboard.core.config.config import Config, get_config
from switchboard.core.config.schema import ConfigSchema, EnvVarSpec
from switchboard.core.config.validation import ConfigError, load_env_var, validate_all

__all__ = [
    "Config",
    "ConfigError",
    "ConfigSchema",
    "EnvVarSpec",
    "get_config",
    "load_env_var",
    "validate_all",
]
