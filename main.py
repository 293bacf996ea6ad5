"""
Document Registry Entry Point

Run with: python main.py <command>
Serve the HTTP API with: python main.py serve
Or with uvicorn: uvicorn app:app --reload
"""

import sys

from docregistry.cli import main

if __name__ == "__main__":
    sys.exit(main())
