# Sphinx configuration file

import os
import sys
sys.path.insert(0, os.path.abspath('../src'))

from token_migrator import __version__  # noqa: E402

project = 'Token Migrator'
author = 'Token Migrator contributors'
release = __version__
version = '.'.join(__version__.split('.')[:2])

extensions = [
    'sphinx.ext.autodoc',
    'sphinx.ext.napoleon',
    'sphinx.ext.viewcode',
    'sphinx.ext.intersphinx',
    'sphinx_autodoc_typehints',
]

root_doc = 'index'
exclude_patterns = ['_build', 'Thumbs.db', '.DS_Store']

html_theme = 'sphinx_rtd_theme'

# Pydantic models document their fields; the generated model plumbing is noise.
autodoc_default_options = {
    'members': True,
    'member-order': 'bysource',
    'undoc-members': True,
    'exclude-members': '__weakref__, model_config, model_fields, model_computed_fields',
}
typehints_fully_qualified = False
always_document_param_types = False

# The engine and its step modules use Google-style docstrings.
napoleon_google_docstring = True
napoleon_numpy_docstring = False

intersphinx_mapping = {
    'python': ('https://docs.python.org/3', None),
    'pydantic': ('https://docs.pydantic.dev/latest', None),
    'requests': ('https://requests.readthedocs.io/en/latest', None),
    'fastapi': ('https://fastapi.tiangolo.com', None),
}
