"""Module with fixtures that create drivers on temporary directories."""

import pytest_asyncio

from relayfs.filesystem.driver import FileSystemDriver


@pytest_asyncio.fixture
async def make_driver(tmp_path):
    drivers = []

    def make(**kwargs):
        kwargs.setdefault("progress_interval", 0.01)

        driver = FileSystemDriver(str(tmp_path), **kwargs)
        drivers.append(driver)

        return driver

    yield make

    for driver in drivers:
        await driver.aclose()


@pytest_asyncio.fixture
async def driver(make_driver):
    return make_driver()
