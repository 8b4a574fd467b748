#!/usr/bin/env python3
"""Serve the news API."""

import os
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv
import uvicorn

if __name__ == "__main__":
    load_dotenv()
    from cre_news.api.app import app

    port = int(os.environ.get("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
