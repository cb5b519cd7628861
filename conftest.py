"""Root conftest: make the ``src`` layout and shared test helpers importable.

pytest's default ``prepend`` import mode only inserts the directory of each
test module into ``sys.path``, so neither ``polyfold`` (under ``src``) nor
``tests/fakes.py`` would resolve from a plain checkout.
"""

import os
import sys

_ROOT = os.path.dirname(os.path.abspath(__file__))
for _path in (os.path.join(_ROOT, "tests"), os.path.join(_ROOT, "src")):
    if _path not in sys.path:
        sys.path.insert(0, _path)
