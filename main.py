from __future__ import annotations

import os

from event_assistant.app import configure_logging, create_app
from event_assistant.config import LLM_DEBUG

configure_logging(LLM_DEBUG)

app = create_app()


if __name__ == "__main__":
  import uvicorn

  uvicorn.run(app,
              host=os.getenv("HOST", "127.0.0.1"),
              port=int(os.getenv("PORT", "8000")))
