from __future__ import annotations

from generic_lsp_client.cli import app

if __name__ == "__main__":
    app()
