from collections.abc import Generator

from fastapi import Depends

from launchpad.container import Container, get_container


def get_session(container: Container = Depends(get_container)) -> Generator:
    db = container.session_factory()
    try:
        yield db
    finally:
        db.close()
