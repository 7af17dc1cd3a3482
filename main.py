from __future__ import annotations

import uvicorn

from calagent.app import app
from calagent.config import HOST, PORT

if __name__ == "__main__":
  uvicorn.run(app, host=HOST, port=PORT)
