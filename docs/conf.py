"""Sphinx configuration for getpaid-btpay."""

project = "getpaid-btpay"
author = "getpaid-btpay contributors"
project_copyright = "2026, getpaid-btpay contributors"

extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.autosummary",
    "sphinx.ext.napoleon",
    "sphinx.ext.intersphinx",
    "myst_parser",
]

source_suffix = {
    ".rst": "restructuredtext",
    ".md": "markdown",
}
root_doc = "index"
exclude_patterns = ["_build"]

autodoc_typehints = "description"
autodoc_member_order = "bysource"
autodoc_mock_imports = ["getpaid_core", "transitions"]
autosummary_generate = True

html_theme = "furo"
html_title = "getpaid-btpay"

myst_enable_extensions = [
    "colon_fence",
    "fieldlist",
    "deflist",
]
myst_heading_anchors = 2

intersphinx_mapping = {
    "python": ("https://docs.python.org/3", None),
    "httpx": ("https://www.python-httpx.org", None),
}
