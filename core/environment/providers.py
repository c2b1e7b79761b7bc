from dishka import Provider, Scope, provide
from pydantic import ValidationError

from core.environment.config import Settings
from core.exceptions import ConfigurationException


class EnvironmentProvider(Provider):
    """
    Provider for environment configuration.
    """

    component = "environment"
    scope = Scope.APP

    @provide
    def get_environment(self) -> Settings:
        """
        Provide application settings.

        Returns
        -------
        Settings
            Application settings instance

        Raises
        ------
        ConfigurationException
            If the environment holds invalid values
        """
        try:
            settings = Settings()
            settings.get_discriminators()
        except (ValidationError, ValueError) as e:
            raise ConfigurationException(f"Invalid configuration: {e}") from e
        return settings
