# Configuration file for the Sphinx documentation builder.
#
# For the full list of built-in configuration values, see the documentation:
# https://www.sphinx-doc.org/en/master/usage/configuration.html

# -- Project information -----------------------------------------------------
# https://www.sphinx-doc.org/en/master/usage/configuration.html#project-information

project = "clustermf"
copyright = "2024, clustermf developers"
author = "clustermf developers"

# -- General configuration ---------------------------------------------------
# https://www.sphinx-doc.org/en/master/usage/configuration.html#general-configuration

rst_prolog = """
.. role:: python(code)
    :language: python
    :class: highlight

.. role:: bash(code)
   :language: bash
   :class: highlight
"""

extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.napoleon",
    "sphinx.ext.intersphinx",
    "sphinx_autodoc_typehints",
    "sphinx.ext.autosummary",
    "sphinx.ext.mathjax",
]

autodoc_typehints_format = "short"
autodoc_default_flags = [
    "members",
    "undoc-members",
]
always_use_bars_union = True
python_use_unqualified_type_names = True

napoleon_google_docstring = False
napoleon_include_init_with_doc = True
napoleon_numpy_docstring = True
napoleon_use_param = True

templates_path = ["_templates"]

intersphinx_mapping = {
    "numpy": ("https://numpy.org/doc/stable/", None),
    "scipy": ("https://docs.scipy.org/doc/scipy/", None),
    "python": ("https://docs.python.org/3", None),
    "pyscf": ("https://pyscf.org/", None),
    "attrs": ("https://www.attrs.org/en/stable/", None),
}


# -- Options for HTML output -------------------------------------------------
# https://www.sphinx-doc.org/en/master/usage/configuration.html#options-for-html-output
html_theme = "furo"
