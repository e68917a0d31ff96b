# Sphinx configuration file

import os
import sys

sys.path.insert(0, os.path.abspath("../src"))

from task_graph_runner import __version__  # noqa: E402

project = "Task Graph Runner"
copyright = "2026, Task Graph Runner contributors"
author = "Task Graph Runner contributors"
release = __version__

extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.napoleon",
    "sphinx.ext.viewcode",
    "sphinx_autodoc_typehints",
]

exclude_patterns = ["_build", "Thumbs.db", ".DS_Store"]

html_theme = "sphinx_rtd_theme"

autodoc_default_options = {
    "members": True,
    "member-order": "bysource",
    "undoc-members": True,
}

napoleon_google_docstring = True
napoleon_numpy_docstring = False
