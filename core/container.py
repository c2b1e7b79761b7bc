from dishka import AsyncContainer, Provider, make_async_container
from dishka.integrations.fastapi import FastapiProvider

from core.environment.providers import EnvironmentProvider
from core.logging.providers import LoggerProvider
from streams.providers import StreamsProvider


def build_container(*extra_providers: Provider) -> AsyncContainer:
    """
    Build the dependency container.

    Parameters
    ----------
    *extra_providers : Provider
        Integration specific providers

    Returns
    -------
    AsyncContainer
        Application container
    """
    return make_async_container(
        *extra_providers,
        EnvironmentProvider(),
        LoggerProvider(),
        StreamsProvider()
    )


container = build_container(FastapiProvider())
