"""
justls - A language server for justfiles

justls lets editors navigate a justfile: go to the definition of a recipe
or variable, and hover a symbol to see what it is.

Packages:
- justls.syntax: tolerant justfile parser and symbol index
- justls.lsp: JSON-RPC transport, dispatcher and the language server
"""

__version__ = "0.1.0"

SERVER_NAME = "justls"
