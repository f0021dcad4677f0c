"""Configure :python:`clustermf`

One can modify settings in one session or create an RC-file.
See examples below.

Examples
--------
>>> from clustermf.shared.config import settings
>>>
>>> settings.PRINT_LEVEL = 10
Prints a line whenever a :class:`~clustermf.shared.helper.Timer` starts
for this python session.

>>> from clustermf.shared.config import dump_settings
>>>
>>> dump_settings()
Creates ~/.clustermfrc.yml file that allows changes to persist.
"""

from pathlib import Path
from typing import Final

import yaml
from attrs import define
from cattrs import structure, unstructure

from clustermf.shared.helper import add_docstring

DEFAULT_RC_PATH: Final = Path("~/.clustermfrc.yml")


@define
class Settings:
    PRINT_LEVEL: int = 5
    #: Relative cut-off of small singular values in the pseudoinverses
    #: taken by the DIIS and Newton orbital optimizers.
    #: :python:`None` takes the default of :func:`scipy.linalg.pinv`.
    PINV_RTOL: float | None = None


def _write_settings(settings: Settings, path: Path) -> None:
    with open(path, "w+") as f:
        f.write("# Settings files for `clustermf`.\n")
        f.write("# You can delete keys; in this case the default is taken.\n")
        yaml.dump(unstructure(settings), stream=f, default_flow_style=False)


def _read_settings(path: Path) -> Settings:
    with open(path) as f:
        return structure(yaml.safe_load(stream=f), Settings)


@add_docstring(f"Writes settings to :code:`{DEFAULT_RC_PATH}`")
def dump_settings() -> None:
    _write_settings(settings, DEFAULT_RC_PATH.expanduser())


if DEFAULT_RC_PATH.expanduser().exists():
    settings = _read_settings(DEFAULT_RC_PATH.expanduser())
else:
    settings = Settings()
