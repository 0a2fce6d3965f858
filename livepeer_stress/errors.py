class StressTestError(Exception):
    """Base class for errors raised by the stress test tooling."""


class ConfigurationError(StressTestError):
    """Required configuration is missing or malformed. Fatal before any request is sent."""


class MissingPromptError(ConfigurationError):
    def __init__(self, key: str, path: str):
        super().__init__(f"Could not find {key} in prompts file {path}")
        self.key = key
        self.path = path
