import pathlib
import sys

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from haifa_luabridge import LuaContext, LuaLibraryNotFound, load_library


@pytest.fixture
def lua_library() -> None:
    try:
        load_library()
    except LuaLibraryNotFound as exc:
        pytest.skip(str(exc))


@pytest.fixture
def lua(lua_library):
    with LuaContext() as context:
        yield context
