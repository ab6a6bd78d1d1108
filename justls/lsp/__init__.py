"""
justls.lsp - Language Server Protocol implementation for justfiles

This package provides an LSP server for justfiles, enabling editor
integration for:
- Go to definition of recipes and variables
- Hover information

The LSP server communicates over stdio using JSON-RPC 2.0.
"""

from justls.lsp.server import JustLanguageServer

__all__ = ["JustLanguageServer"]
