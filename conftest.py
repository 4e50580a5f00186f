"""Root test plumbing.

The source roots (``api/``, ``cli/``, ``meter_engine/``) share their names
with the packages inside them.  Under ``--import-mode=importlib`` pytest
registers each ``<root>/tests/conftest.py`` as ``<root>.tests.conftest`` and
inserts a namespace module for ``<root>`` into ``sys.modules``, shadowing the
real package.  Importing the real packages first keeps them in place.
"""

import api  # noqa: F401
import cli  # noqa: F401
import meter_engine  # noqa: F401
